from __future__ import annotations

import os
import uuid
from datetime import datetime, timezone

import pytest

from autotown_core.usage.merge import merge_found_controller
from autotown_core.usage.types import FoundController
from autotown_gcp.stores.firestore_store import FirestoreControllerStore


def _controller(identity: str, day: int, count: int = 1) -> FoundController:
    stamp = datetime(2016, 3, day, tzinfo=timezone.utc)
    return FoundController(
        uuid=identity,
        name="Revolution",
        git_hash="deadbeef",
        git_tag="",
        uavo_hash="",
        gcs_os="Windows 10",
        gcs_arch="x86_64",
        gcs_version="",
        addr="",
        country="us",
        region="",
        city="",
        lat=0.0,
        lon=0.0,
        timestamp=stamp,
        oldest=stamp,
        count=count,
    )


class _Snapshot:
    def __init__(self, doc_id: str, data: dict | None):
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class _DocRef:
    def __init__(self, collection: "_Collection", doc_id: str):
        self.collection = collection
        self.id = doc_id


class _Collection:
    def __init__(self, name: str):
        self.name = name
        self.docs: dict[str, dict] = {}

    def document(self, doc_id: str) -> _DocRef:
        return _DocRef(self, doc_id)


class _Transaction:
    def __init__(self):
        self.writes: list[tuple[_DocRef, dict]] = []

    def set(self, ref: _DocRef, payload: dict, merge: bool = False) -> None:
        self.writes.append((ref, payload))

    def commit(self) -> None:
        for ref, payload in self.writes:
            ref.collection.docs[ref.id] = dict(payload)


class _FakeClient:
    def __init__(self):
        self.collections: dict[str, _Collection] = {}
        self.transactions: list[_Transaction] = []

    def collection(self, name: str) -> _Collection:
        return self.collections.setdefault(name, _Collection(name))

    def get_all(self, refs, transaction=None):
        for ref in refs:
            yield _Snapshot(ref.id, ref.collection.docs.get(ref.id))

    def transaction(self) -> _Transaction:
        txn = _Transaction()
        self.transactions.append(txn)
        return txn


def _run_and_commit(fn):
    def wrapper(transaction):
        result = fn(transaction)
        transaction.commit()
        return result

    return wrapper


@pytest.mark.pro
def test_firestore_merge_runs_in_transaction(monkeypatch):
    monkeypatch.setattr(
        "autotown_gcp.stores.firestore_store.firestore.transactional",
        _run_and_commit,
    )
    client = _FakeClient()
    store = FirestoreControllerStore(client, collection_prefix="test_")

    store.merge_controllers({"board-1": _controller("board-1", 1)}, merge_found_controller)
    merged = store.merge_controllers(
        {"board-1": _controller("board-1", 4), "board-2": _controller("board-2", 2)},
        merge_found_controller,
    )

    assert len(client.transactions) == 2
    assert [item.uuid for item in merged] == ["board-1", "board-2"]
    docs = client.collections["test_FoundController"].docs
    assert docs["board-1"]["count"] == 2
    assert docs["board-1"]["oldest"] == datetime(2016, 3, 1, tzinfo=timezone.utc)
    assert docs["board-1"]["timestamp"] == datetime(2016, 3, 4, tzinfo=timezone.utc)

    fetched = store.get_controllers(["board-1", "missing"])
    assert list(fetched) == ["board-1"]
    assert fetched["board-1"].count == 2


def _require_firestore_emulator() -> None:
    if os.getenv("FIRESTORE_EMULATOR_HOST"):
        return
    if os.getenv("FIRESTORE_ALLOW_REAL") == "1":
        return
    pytest.skip("Set FIRESTORE_EMULATOR_HOST or FIRESTORE_ALLOW_REAL=1")


@pytest.mark.pro
def test_firestore_controller_store_roundtrip(monkeypatch):
    _require_firestore_emulator()
    monkeypatch.setenv("AUTOTOWN_STORE", "firestore")
    project_id = os.getenv("GOOGLE_CLOUD_PROJECT") or "autotown-test"
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", project_id)

    from autotown_gcp.stores import get_store_bundle

    stores = get_store_bundle(
        "",
        project_id=project_id,
        collection_prefix=f"test_{uuid.uuid4().hex}_",
    )
    stores.controllers.merge_controllers(
        {"board-1": _controller("board-1", 3)},
        merge_found_controller,
    )
    stores.controllers.merge_controllers(
        {"board-1": _controller("board-1", 1), "board-2": _controller("board-2", 2)},
        merge_found_controller,
    )
    ordered = list(stores.controllers.iter_controllers())
    assert [item.uuid for item in ordered] == ["board-1", "board-2"]
    assert ordered[0].count == 2
    assert ordered[0].timestamp == datetime(2016, 3, 3, tzinfo=timezone.utc)
    assert ordered[0].oldest == datetime(2016, 3, 1, tzinfo=timezone.utc)
