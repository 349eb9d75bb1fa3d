from autotown_core.stores.interfaces import (
    ControllerStore,
    GitLabelStore,
    MergeFn,
    TuneResultStore,
    UsageStore,
)
from autotown_core.stores.registry import StoreBundle, get_store_bundle

__all__ = [
    "ControllerStore",
    "GitLabelStore",
    "MergeFn",
    "StoreBundle",
    "TuneResultStore",
    "UsageStore",
    "get_store_bundle",
]
