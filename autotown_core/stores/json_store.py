from __future__ import annotations

import base64
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping

import fsspec

from autotown_core.errors import StoreUnavailable
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
    format_rfc3339,
    parse_timestamp,
)

_WRITE_LOCK = threading.Lock()


def _data_uri(base_uri: str, *parts: str) -> str:
    return "/".join([base_uri.rstrip("/"), *parts])


def _read_items(uri: str, key: str) -> list[dict[str, Any]]:
    try:
        fs, path = fsspec.core.url_to_fs(uri)
        if not fs.exists(path):
            return []
        with fs.open(path, "rb") as handle:
            payload = json.loads(handle.read().decode("utf-8"))
    except (OSError, ValueError) as exc:
        raise StoreUnavailable(f"Failed to read {uri}: {exc}") from exc
    items = payload.get(key, []) if isinstance(payload, dict) else []
    return [item for item in items if isinstance(item, dict)]


def _write_items(uri: str, key: str, items: list[dict[str, Any]]) -> str:
    payload = {
        "updated_at": datetime.now(timezone.utc).isoformat(),
        key: items,
    }
    try:
        fs, path = fsspec.core.url_to_fs(uri)
        fs.makedirs("/".join(path.split("/")[:-1]), exist_ok=True)
        with fs.open(path, "wb") as handle:
            handle.write(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    except OSError as exc:
        raise StoreUnavailable(f"Failed to write {uri}: {exc}") from exc
    return uri


def _encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _decode_bytes(value: Any) -> bytes:
    if not value:
        return b""
    return base64.b64decode(str(value))


def _serialize_controller(controller: FoundController) -> dict[str, Any]:
    payload = controller_to_dict(controller)
    payload["timestamp"] = format_rfc3339(controller.timestamp, fractional=True)
    payload["oldest"] = format_rfc3339(controller.oldest, fractional=True)
    return payload


class JsonUsageStore(UsageStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

    def _uri(self) -> str:
        return _data_uri(self._base_uri, "usage", "usage_stats.json")

    def iter_usage_records(self) -> Iterator[RawUsageRecord]:
        for item in _read_items(self._uri(), "records"):
            yield RawUsageRecord(
                id=str(item.get("id") or ""),
                data=_decode_bytes(item.get("data")),
                addr=str(item.get("addr") or ""),
                country=str(item.get("country") or ""),
                region=str(item.get("region") or ""),
                city=str(item.get("city") or ""),
                lat=float(item.get("lat") or 0),
                lon=float(item.get("lon") or 0),
                timestamp=parse_timestamp(item.get("timestamp")),
            )

    def add_usage_record(self, record: RawUsageRecord) -> str:
        record_id = record.id or str(uuid.uuid4())
        with _WRITE_LOCK:
            items = _read_items(self._uri(), "records")
            items.append(
                {
                    "id": record_id,
                    "data": _encode_bytes(record.data),
                    "addr": record.addr,
                    "country": record.country,
                    "region": record.region,
                    "city": record.city,
                    "lat": record.lat,
                    "lon": record.lon,
                    "timestamp": format_rfc3339(record.timestamp, fractional=True),
                }
            )
            _write_items(self._uri(), "records", items)
        return record_id


class JsonControllerStore(ControllerStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

    def _uri(self) -> str:
        return _data_uri(self._base_uri, "controllers", "found_controllers.json")

    def _load(self) -> dict[str, FoundController]:
        controllers: dict[str, FoundController] = {}
        for item in _read_items(self._uri(), "controllers"):
            controller = controller_from_dict(item)
            controllers[controller.uuid] = controller
        return controllers

    def get_controllers(self, ids: Iterable[str]) -> dict[str, FoundController]:
        stored = self._load()
        return {key: stored[key] for key in ids if key in stored}

    def iter_controllers(self) -> Iterator[FoundController]:
        ordered = sorted(
            self._load().values(),
            key=lambda controller: controller.timestamp,
            reverse=True,
        )
        yield from ordered

    def merge_controllers(
        self,
        pending: Mapping[str, FoundController],
        merge: MergeFn,
    ) -> list[FoundController]:
        with _WRITE_LOCK:
            stored = self._load()
            merged = [merge(stored.get(key), value) for key, value in pending.items()]
            for controller in merged:
                stored[controller.uuid] = controller
            _write_items(
                self._uri(),
                "controllers",
                [_serialize_controller(item) for item in stored.values()],
            )
        return merged


class JsonGitLabelStore(GitLabelStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

    def load_git_labels(self) -> list[GitLabel]:
        uri = _data_uri(self._base_uri, "control", "git_labels.json")
        return [
            GitLabel(
                hash=str(item.get("hash") or ""),
                label=str(item.get("label") or ""),
                kind=str(item.get("kind") or "tag"),
            )
            for item in _read_items(uri, "labels")
            if item.get("hash") and item.get("label")
        ]


class JsonTuneResultStore(TuneResultStore):
    def __init__(self, base_uri: str) -> None:
        self._base_uri = base_uri

    def _uri(self) -> str:
        return _data_uri(self._base_uri, "tunes", "tune_results.json")

    def recent_tune_results(self, limit: int) -> list[TuneResult]:
        results = [
            TuneResult(
                id=str(item.get("id") or ""),
                uuid=str(item.get("uuid") or ""),
                data=_decode_bytes(item.get("data")),
                timestamp=parse_timestamp(item.get("timestamp")),
            )
            for item in _read_items(self._uri(), "results")
        ]
        results.sort(key=lambda result: result.timestamp, reverse=True)
        return results[:limit]

    def put_tune_results(self, results: Iterable[TuneResult]) -> None:
        with _WRITE_LOCK:
            items = _read_items(self._uri(), "results")
            by_id = {str(item.get("id")): item for item in items}
            for result in results:
                by_id[result.id] = {
                    "id": result.id,
                    "uuid": result.uuid,
                    "data": _encode_bytes(result.data),
                    "timestamp": format_rfc3339(result.timestamp, fractional=True),
                }
            _write_items(self._uri(), "results", list(by_id.values()))
