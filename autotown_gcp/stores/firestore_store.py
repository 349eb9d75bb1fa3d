from __future__ import annotations

import os
from typing import Iterable, Iterator, Mapping

from google.cloud import firestore

from autotown_core.errors import StoreUnavailable
from autotown_core.logging import get_logger
from autotown_core.stores.interfaces import (
    ControllerStore,
    GitLabelStore,
    MergeFn,
    TuneResultStore,
    UsageStore,
)
from autotown_core.usage.types import (
    FoundController,
    GitLabel,
    RawUsageRecord,
    TuneResult,
    controller_from_dict,
    controller_to_dict,
    parse_timestamp,
    usage_record_from_dict,
)

logger = get_logger(__name__)


class FirestoreStoreBase:
    _collection_name = ""

    def __init__(
        self,
        client: firestore.Client | None = None,
        *,
        project_id: str | None = None,
        collection_prefix: str | None = None,
        collection_name: str | None = None,
    ) -> None:
        self._client = client or firestore.Client(project=project_id)
        if collection_prefix is None:
            collection_prefix = os.getenv("FIRESTORE_COLLECTION_PREFIX", "")
        self._collection_prefix = collection_prefix.strip()
        if collection_name:
            self._collection_name = collection_name

    def _collection(self, name: str | None = None) -> firestore.CollectionReference:
        resolved = name or self._collection_name
        prefix = self._collection_prefix
        if prefix:
            return self._client.collection(f"{prefix}{resolved}")
        return self._client.collection(resolved)

    def _commit_batches(
        self,
        *,
        sets: Iterable[tuple[firestore.DocumentReference, dict[str, object]]],
        merge: bool = False,
    ) -> None:
        batch = self._client.batch()
        count = 0
        for ref, payload in sets:
            batch.set(ref, payload, merge=merge)
            count += 1
            if count >= 450:
                batch.commit()
                batch = self._client.batch()
                count = 0
        if count:
            batch.commit()


class FirestoreUsageStore(FirestoreStoreBase, UsageStore):
    _collection_name = "UsageStat"

    def iter_usage_records(self) -> Iterator[RawUsageRecord]:
        try:
            for doc in self._collection().stream():
                try:
                    yield usage_record_from_dict(doc.to_dict() or {}, doc_id=doc.id)
                except ValueError as exc:
                    logger.warning(
                        "Skipping malformed usage record",
                        extra={"record_id": doc.id, "error_message": str(exc)},
                    )
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore scan failed: {exc}") from exc

    def add_usage_record(self, record: RawUsageRecord) -> str:
        collection = self._collection()
        ref = collection.document(record.id) if record.id else collection.document()
        payload: dict[str, object] = {
            "data": record.data,
            "addr": record.addr,
            "country": record.country,
            "region": record.region,
            "city": record.city,
            "lat": record.lat,
            "lon": record.lon,
            "timestamp": record.timestamp,
        }
        try:
            ref.set(payload)
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore write failed: {exc}") from exc
        return ref.id


class FirestoreControllerStore(FirestoreStoreBase, ControllerStore):
    _collection_name = "FoundController"

    def get_controllers(self, ids: Iterable[str]) -> dict[str, FoundController]:
        collection = self._collection()
        refs = [collection.document(key) for key in ids]
        if not refs:
            return {}
        try:
            snapshots = list(self._client.get_all(refs))
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore read failed: {exc}") from exc
        return {
            snapshot.id: controller_from_dict(snapshot.to_dict() or {}, doc_id=snapshot.id)
            for snapshot in snapshots
            if snapshot.exists
        }

    def iter_controllers(self) -> Iterator[FoundController]:
        query = self._collection().order_by(
            "timestamp",
            direction=firestore.Query.DESCENDING,
        )
        try:
            for doc in query.stream():
                yield controller_from_dict(doc.to_dict() or {}, doc_id=doc.id)
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore scan failed: {exc}") from exc

    def merge_controllers(
        self,
        pending: Mapping[str, FoundController],
        merge: MergeFn,
    ) -> list[FoundController]:
        collection = self._collection()
        refs = {key: collection.document(key) for key in pending}

        @firestore.transactional
        def _txn(transaction: firestore.Transaction) -> list[FoundController]:
            stored: dict[str, FoundController] = {}
            for snapshot in self._client.get_all(
                list(refs.values()),
                transaction=transaction,
            ):
                if snapshot.exists:
                    stored[snapshot.id] = controller_from_dict(
                        snapshot.to_dict() or {},
                        doc_id=snapshot.id,
                    )
            merged: list[FoundController] = []
            for key, value in pending.items():
                controller = merge(stored.get(key), value)
                transaction.set(refs[key], controller_to_dict(controller))
                merged.append(controller)
            return merged

        try:
            return _txn(self._client.transaction())
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore transaction failed: {exc}") from exc


class FirestoreGitLabelStore(FirestoreStoreBase, GitLabelStore):
    _collection_name = "GitLabel"

    def load_git_labels(self) -> list[GitLabel]:
        labels: list[GitLabel] = []
        try:
            docs = list(self._collection().stream())
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore scan failed: {exc}") from exc
        for doc in docs:
            data = doc.to_dict() or {}
            git_hash = str(data.get("hash") or "")
            label = str(data.get("label") or "")
            if not git_hash or not label:
                continue
            labels.append(
                GitLabel(hash=git_hash, label=label, kind=str(data.get("kind") or "tag"))
            )
        return labels


class FirestoreTuneResultStore(FirestoreStoreBase, TuneResultStore):
    _collection_name = "TuneResults"

    def recent_tune_results(self, limit: int) -> list[TuneResult]:
        query = (
            self._collection()
            .order_by("timestamp", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        try:
            docs = list(query.stream())
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore query failed: {exc}") from exc
        results: list[TuneResult] = []
        for doc in docs:
            data = doc.to_dict() or {}
            results.append(
                TuneResult(
                    id=doc.id,
                    uuid=str(data.get("uuid") or ""),
                    data=bytes(data.get("data") or b""),
                    timestamp=parse_timestamp(data.get("timestamp")),
                )
            )
        return results

    def put_tune_results(self, results: Iterable[TuneResult]) -> None:
        collection = self._collection()
        records = [
            (collection.document(result.id), {"uuid": result.uuid, "data": result.data})
            for result in results
        ]
        try:
            self._commit_batches(sets=records, merge=True)
        except Exception as exc:  # pragma: no cover - infrastructure errors
            raise StoreUnavailable(f"Firestore batch write failed: {exc}") from exc
