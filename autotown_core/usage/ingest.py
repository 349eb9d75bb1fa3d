from __future__ import annotations

import json
from datetime import datetime

from autotown_core.codec import compress
from autotown_core.errors import ValidationError
from autotown_core.usage.types import RawUsageRecord, utc_now


def parse_city_lat_long(value: str | None) -> tuple[float, float]:
    """Parse a ``"lat,lon"`` geolocation header; anything malformed is 0,0."""
    if not value:
        return 0.0, 0.0
    parts = value.split(",")
    if len(parts) != 2:
        return 0.0, 0.0
    try:
        return float(parts[0]), float(parts[1])
    except ValueError:
        return 0.0, 0.0


def build_usage_record(
    body: bytes,
    *,
    addr: str = "",
    country: str = "",
    region: str = "",
    city: str = "",
    city_lat_long: str | None = None,
    received_at: datetime | None = None,
) -> RawUsageRecord:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Usage report must be JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Usage report must be a JSON object")
    lat, lon = parse_city_lat_long(city_lat_long)
    return RawUsageRecord(
        id="",
        data=compress(body),
        addr=addr,
        country=country,
        region=region,
        city=city,
        lat=lat,
        lon=lon,
        timestamp=received_at or utc_now(),
    )
