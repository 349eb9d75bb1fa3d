from __future__ import annotations

import os

from google.cloud import firestore

from autotown_core.config import Config
from autotown_core.stores import registry as core_registry
from autotown_core.stores.registry import StoreBundle
from autotown_gcp.stores.firestore_store import (
    FirestoreControllerStore,
    FirestoreGitLabelStore,
    FirestoreTuneResultStore,
    FirestoreUsageStore,
)


def get_store_bundle(
    base_uri: str,
    *,
    config: Config | None = None,
    client: firestore.Client | None = None,
    project_id: str | None = None,
    collection_prefix: str | None = None,
) -> StoreBundle:
    backend = os.getenv("AUTOTOWN_STORE", "json").strip().lower()
    if backend != "firestore":
        return core_registry.get_store_bundle(base_uri)
    firestore_client = client or firestore.Client(project=project_id)
    if collection_prefix is None and config is not None:
        collection_prefix = config.collection_prefix

    def _names(attr: str) -> str | None:
        if config is None:
            return None
        return getattr(config, attr)

    return StoreBundle(
        usage=FirestoreUsageStore(
            firestore_client,
            collection_prefix=collection_prefix,
            collection_name=_names("usage_collection"),
        ),
        controllers=FirestoreControllerStore(
            firestore_client,
            collection_prefix=collection_prefix,
            collection_name=_names("controller_collection"),
        ),
        git_labels=FirestoreGitLabelStore(
            firestore_client,
            collection_prefix=collection_prefix,
            collection_name=_names("git_label_collection"),
        ),
        tunes=FirestoreTuneResultStore(
            firestore_client,
            collection_prefix=collection_prefix,
            collection_name=_names("tune_collection"),
        ),
    )
