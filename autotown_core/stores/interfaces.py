from __future__ import annotations

from typing import Callable, Iterable, Iterator, Mapping, Protocol

from autotown_core.usage.types import (
    FoundController,
    GitLabel,
    RawUsageRecord,
    TuneResult,
)

MergeFn = Callable[[FoundController | None, FoundController], FoundController]


class UsageStore(Protocol):
    def iter_usage_records(self) -> Iterator[RawUsageRecord]:
        ...

    def add_usage_record(self, record: RawUsageRecord) -> str:
        ...


class ControllerStore(Protocol):
    def get_controllers(self, ids: Iterable[str]) -> dict[str, FoundController]:
        ...

    def iter_controllers(self) -> Iterator[FoundController]:
        """Yield every aggregate, newest ``timestamp`` first."""
        ...

    def merge_controllers(
        self,
        pending: Mapping[str, FoundController],
        merge: MergeFn,
    ) -> list[FoundController]:
        """Read the stored rows for ``pending``, merge, and write them in one batch."""
        ...


class GitLabelStore(Protocol):
    def load_git_labels(self) -> list[GitLabel]:
        ...


class TuneResultStore(Protocol):
    def recent_tune_results(self, limit: int) -> list[TuneResult]:
        ...

    def put_tune_results(self, results: Iterable[TuneResult]) -> None:
        ...
