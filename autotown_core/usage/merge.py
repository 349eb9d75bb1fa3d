"""Fold board sightings from one work item into per-controller aggregates.

Every delivery is counted, so replaying a work item raises ``count`` again
while ``timestamp`` and ``oldest`` stay put. Cross-report merges keep the
newest ``timestamp`` and the earliest ``oldest`` seen for an identity.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from autotown_core.cache import StatsCache
from autotown_core.logging import get_logger
from autotown_core.stores.interfaces import ControllerStore
from autotown_core.usage.identity import normalize_board_name, resolve_identity
from autotown_core.usage.report import parse_report
from autotown_core.usage.types import (
    BoardSighting,
    FoundController,
    ReportContext,
    RolloutWorkItem,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class RollupResult:
    sightings: int
    skipped: int
    updated: tuple[str, ...]


def fold_sightings(
    item: RolloutWorkItem,
    context: ReportContext,
    sightings: list[BoardSighting],
) -> tuple[dict[str, FoundController], int]:
    """Collapse one report's sightings into one aggregate per identity.

    Returns the aggregates keyed by identity and the number of sightings that
    carried neither a UUID nor a CPU serial.
    """
    items: dict[str, FoundController] = {}
    skipped = 0
    for sighting in sightings:
        identity = resolve_identity(sighting)
        if identity is None:
            logger.info(
                "No UUID or CPU ID found for board",
                extra={"status": "skipped"},
            )
            skipped += 1
            continue

        previous = items.get(identity)
        count = previous.count + 1 if previous is not None else 1
        oldest = item.timestamp
        if previous is not None and previous.oldest < oldest:
            oldest = previous.oldest
        items[identity] = FoundController(
            uuid=identity,
            name=normalize_board_name(sighting.name),
            git_hash=sighting.git_hash,
            git_tag=sighting.git_tag,
            uavo_hash=sighting.uavo_hash,
            gcs_os=context.current_os,
            gcs_arch=context.current_arch,
            gcs_version=context.gcs_version,
            addr=item.ip if context.shares_address else "",
            country=item.country,
            region=item.region,
            city=item.city,
            lat=item.lat,
            lon=item.lon,
            timestamp=item.timestamp,
            oldest=oldest,
            count=count,
        )
    return items, skipped


def merge_found_controller(
    prev: FoundController | None,
    current: FoundController,
) -> FoundController:
    if prev is None:
        return current
    oldest = min(prev.oldest, current.oldest)
    timestamp = current.timestamp
    if prev.timestamp > current.timestamp:
        # A late report: keep the stored recency and fold its time into history.
        timestamp = prev.timestamp
        oldest = min(oldest, current.timestamp)
    return replace(
        current,
        timestamp=timestamp,
        oldest=oldest,
        count=prev.count + current.count,
    )


def rollup_work_item(
    item: RolloutWorkItem,
    *,
    controllers: ControllerStore,
    cache: StatsCache | None = None,
    cache_key: str = "results_stats",
) -> RollupResult:
    context, sightings = parse_report(item.raw_data)
    pending, skipped = fold_sightings(item, context, sightings)
    if not pending:
        return RollupResult(sightings=len(sightings), skipped=skipped, updated=())

    merged = controllers.merge_controllers(pending, merge_found_controller)
    logger.info(
        "Updated controller records",
        extra={
            "updated": len(merged),
            "sightings": len(sightings),
            "skipped": skipped,
        },
    )
    if cache is not None:
        _invalidate(cache, cache_key)
    return RollupResult(
        sightings=len(sightings),
        skipped=skipped,
        updated=tuple(controller.uuid for controller in merged),
    )


def _invalidate(cache: StatsCache, key: str) -> None:
    try:
        cache.delete(key)
    except Exception as exc:
        logger.warning(
            "Failed to invalidate stats cache",
            extra={"error_message": str(exc)},
        )
