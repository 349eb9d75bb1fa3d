"""Wire encoding of rollup work items and parsing of embedded reports."""

from __future__ import annotations

import json
from typing import Any

from autotown_core.codec import compress, decompress
from autotown_core.errors import CorruptPayload
from autotown_core.usage.types import (
    BoardSighting,
    RawUsageRecord,
    ReportContext,
    RolloutWorkItem,
    format_rfc3339,
    parse_timestamp,
)

_SIGHTING_FIELDS = {
    "uuid": "UUID",
    "cpu": "CPU",
    "name": "Name",
    "fw_hash": "FwHash",
    "git_hash": "GitHash",
    "git_tag": "GitTag",
    "uavo_hash": "UavoHash",
}


def work_item_from_record(record: RawUsageRecord) -> RolloutWorkItem:
    body = decompress(record.data)
    try:
        raw_json = body.decode("utf-8")
        raw_data = json.loads(raw_json)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptPayload(f"Usage record {record.id} is not JSON") from exc
    return RolloutWorkItem(
        ip=record.addr,
        country=record.country,
        region=record.region,
        city=record.city,
        lat=record.lat,
        lon=record.lon,
        timestamp=record.timestamp,
        raw_data=raw_data,
        raw_json=raw_json,
    )


def work_item_to_dict(item: RolloutWorkItem) -> dict[str, Any]:
    return {
        "IP": item.ip,
        "Country": item.country,
        "Region": item.region,
        "City": item.city,
        "Lat": item.lat,
        "Lon": item.lon,
        "Timestamp": format_rfc3339(item.timestamp, fractional=True),
        "RawData": item.raw_data,
    }


def work_item_from_dict(payload: Any) -> RolloutWorkItem:
    if not isinstance(payload, dict):
        raise CorruptPayload("Work item must be a JSON object")
    try:
        timestamp = parse_timestamp(payload.get("Timestamp"))
        lat = float(payload.get("Lat") or 0)
        lon = float(payload.get("Lon") or 0)
    except (TypeError, ValueError) as exc:
        raise CorruptPayload(f"Invalid work item: {exc}") from exc
    return RolloutWorkItem(
        ip=_string_field(payload, "IP"),
        country=_string_field(payload, "Country"),
        region=_string_field(payload, "Region"),
        city=_string_field(payload, "City"),
        lat=lat,
        lon=lon,
        timestamp=timestamp,
        raw_data=payload.get("RawData"),
    )


def encode_work_item(item: RolloutWorkItem) -> bytes:
    payload = work_item_to_dict(item)
    if item.raw_json is None:
        data = json.dumps(payload, ensure_ascii=True)
    else:
        # Splice the received report in unchanged instead of re-serialising it.
        del payload["RawData"]
        head = json.dumps(payload, ensure_ascii=True)
        data = f'{head[:-1]}, "RawData": {item.raw_json.strip()}}}'
    return compress(data.encode("utf-8"))


def decode_work_item(data: bytes) -> RolloutWorkItem:
    body = decompress(data)
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptPayload("Work item is not JSON") from exc
    return work_item_from_dict(payload)


def parse_report(raw_data: Any) -> tuple[ReportContext, list[BoardSighting]]:
    if not isinstance(raw_data, dict):
        raise CorruptPayload("RawData must be a JSON object")
    context = ReportContext(
        current_os=_string_field(raw_data, "CurrentOS"),
        current_arch=_string_field(raw_data, "CurrentArch"),
        gcs_version=_string_field(raw_data, "gcs_version"),
        share_ip=_string_field(raw_data, "ShareIP"),
    )
    boards = raw_data.get("BoardsSeen")
    if boards is None:
        return context, []
    if not isinstance(boards, list):
        raise CorruptPayload("BoardsSeen must be a list")
    sightings: list[BoardSighting] = []
    for board in boards:
        if not isinstance(board, dict):
            raise CorruptPayload("BoardsSeen entries must be objects")
        sightings.append(
            BoardSighting(
                **{
                    attr: _string_field(board, wire)
                    for attr, wire in _SIGHTING_FIELDS.items()
                }
            )
        )
    return context, sightings


def _string_field(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise CorruptPayload(f"{key} must be a string")
    return value
