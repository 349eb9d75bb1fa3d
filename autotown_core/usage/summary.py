from __future__ import annotations

import json
from collections import Counter
from typing import Any, Iterable

from autotown_core.cache import StatsCache
from autotown_core.logging import get_logger
from autotown_core.stores.interfaces import ControllerStore
from autotown_core.usage.export import abbrev_os
from autotown_core.usage.types import FoundController, format_rfc3339, utc_now

logger = get_logger(__name__)


def summarize_controllers(controllers: Iterable[FoundController]) -> dict[str, Any]:
    boards: Counter[str] = Counter()
    os_families: Counter[str] = Counter()
    total = 0
    sightings = 0
    for controller in controllers:
        total += 1
        sightings += controller.count
        boards[controller.name or "unknown"] += 1
        os_families[abbrev_os(controller.gcs_os) or "unknown"] += 1
    return {
        "total_controllers": total,
        "total_sightings": sightings,
        "boards": dict(sorted(boards.items())),
        "os_families": dict(sorted(os_families.items())),
        "generated_at": format_rfc3339(utc_now()),
    }


def load_stats_summary(
    controllers: ControllerStore,
    *,
    cache: StatsCache | None,
    key: str,
    ttl_seconds: int,
) -> dict[str, Any]:
    if cache is not None:
        try:
            cached = cache.get(key)
        except Exception as exc:
            logger.warning(
                "Stats cache read failed",
                extra={"error_message": str(exc)},
            )
            cached = None
        if cached:
            return json.loads(cached)

    summary = summarize_controllers(controllers.iter_controllers())
    if cache is not None:
        try:
            cache.set(key, json.dumps(summary, ensure_ascii=True), ttl_seconds)
        except Exception as exc:
            logger.warning(
                "Stats cache write failed",
                extra={"error_message": str(exc)},
            )
    return summary
