from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence


@dataclass(frozen=True)
class QueueMessage:
    data: bytes
    attributes: dict[str, str]
    message_id: str | None = None


class QueuePublisher(Protocol):
    def publish(
        self,
        *,
        topic: str,
        data: bytes,
        attributes: Mapping[str, str] | None = None,
    ) -> str: ...

    def publish_batch(
        self,
        *,
        topic: str,
        payloads: Sequence[bytes],
    ) -> list[str]: ...
