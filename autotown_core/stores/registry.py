from __future__ import annotations

import os
from dataclasses import dataclass

from autotown_core.stores.interfaces import (
    ControllerStore,
    GitLabelStore,
    TuneResultStore,
    UsageStore,
)
from autotown_core.stores.json_store import (
    JsonControllerStore,
    JsonGitLabelStore,
    JsonTuneResultStore,
    JsonUsageStore,
)


@dataclass(frozen=True)
class StoreBundle:
    usage: UsageStore
    controllers: ControllerStore
    git_labels: GitLabelStore
    tunes: TuneResultStore


def get_store_bundle(base_uri: str) -> StoreBundle:
    backend = os.getenv("AUTOTOWN_STORE", "json").strip().lower()
    if backend != "json":
        raise ValueError(f"Unsupported store backend: {backend}")
    return StoreBundle(
        usage=JsonUsageStore(base_uri),
        controllers=JsonControllerStore(base_uri),
        git_labels=JsonGitLabelStore(base_uri),
        tunes=JsonTuneResultStore(base_uri),
    )
