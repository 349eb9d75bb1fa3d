from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Senders may emit nanosecond fractions; datetime stops at microseconds.
_FRACTION_RE = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class RawUsageRecord:
    id: str
    data: bytes
    addr: str
    country: str
    region: str
    city: str
    lat: float
    lon: float
    timestamp: datetime


@dataclass(frozen=True)
class RolloutWorkItem:
    ip: str
    country: str
    region: str
    city: str
    lat: float
    lon: float
    timestamp: datetime
    raw_data: Any
    # Report JSON exactly as received; re-encoded from raw_data when absent.
    raw_json: str | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class BoardSighting:
    uuid: str = ""
    cpu: str = ""
    name: str = ""
    fw_hash: str = ""
    git_hash: str = ""
    git_tag: str = ""
    uavo_hash: str = ""


@dataclass(frozen=True)
class ReportContext:
    current_os: str = ""
    current_arch: str = ""
    gcs_version: str = ""
    share_ip: str = ""

    @property
    def shares_address(self) -> bool:
        return self.share_ip == "true"


@dataclass(frozen=True)
class FoundController:
    uuid: str
    name: str
    git_hash: str
    git_tag: str
    uavo_hash: str
    gcs_os: str
    gcs_arch: str
    gcs_version: str
    addr: str
    country: str
    region: str
    city: str
    lat: float
    lon: float
    timestamp: datetime
    oldest: datetime
    count: int


@dataclass(frozen=True)
class GitLabel:
    hash: str
    label: str
    kind: str = "tag"


@dataclass(frozen=True)
class TuneResult:
    id: str
    uuid: str
    data: bytes
    timestamp: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 string (or pass through a datetime) as aware UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, 1)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime, *, fractional: bool = False) -> str:
    parsed = parse_timestamp(value)
    if fractional and parsed.microsecond:
        return parsed.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return parsed.strftime("%Y-%m-%dT%H:%M:%SZ")


def controller_to_dict(controller: FoundController) -> dict[str, object]:
    return {
        "uuid": controller.uuid,
        "name": controller.name,
        "git_hash": controller.git_hash,
        "git_tag": controller.git_tag,
        "uavo_hash": controller.uavo_hash,
        "gcs_os": controller.gcs_os,
        "gcs_arch": controller.gcs_arch,
        "gcs_version": controller.gcs_version,
        "addr": controller.addr,
        "country": controller.country,
        "region": controller.region,
        "city": controller.city,
        "lat": controller.lat,
        "lon": controller.lon,
        "timestamp": controller.timestamp,
        "oldest": controller.oldest,
        "count": controller.count,
    }


def controller_from_dict(
    payload: dict[str, Any],
    *,
    doc_id: str | None = None,
) -> FoundController:
    timestamp = parse_timestamp(payload.get("timestamp"))
    oldest_raw = payload.get("oldest")
    oldest = parse_timestamp(oldest_raw) if oldest_raw else timestamp
    return FoundController(
        uuid=str(payload.get("uuid") or doc_id or ""),
        name=str(payload.get("name") or ""),
        git_hash=str(payload.get("git_hash") or ""),
        git_tag=str(payload.get("git_tag") or ""),
        uavo_hash=str(payload.get("uavo_hash") or ""),
        gcs_os=str(payload.get("gcs_os") or ""),
        gcs_arch=str(payload.get("gcs_arch") or ""),
        gcs_version=str(payload.get("gcs_version") or ""),
        addr=str(payload.get("addr") or ""),
        country=str(payload.get("country") or ""),
        region=str(payload.get("region") or ""),
        city=str(payload.get("city") or ""),
        lat=_coerce_float(payload.get("lat")),
        lon=_coerce_float(payload.get("lon")),
        timestamp=timestamp,
        oldest=min(oldest, timestamp),
        count=_coerce_int(payload.get("count")),
    )


def usage_record_from_dict(
    payload: dict[str, Any],
    *,
    doc_id: str | None = None,
) -> RawUsageRecord:
    data = payload.get("data") or b""
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Usage record data must be bytes")
    return RawUsageRecord(
        id=str(doc_id or payload.get("id") or ""),
        data=bytes(data),
        addr=str(payload.get("addr") or ""),
        country=str(payload.get("country") or ""),
        region=str(payload.get("region") or ""),
        city=str(payload.get("city") or ""),
        lat=_coerce_float(payload.get("lat")),
        lon=_coerce_float(payload.get("lon")),
        timestamp=parse_timestamp(payload.get("timestamp")),
    )


def _coerce_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


def _coerce_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)
