from __future__ import annotations

import hashlib
from datetime import datetime

import pytest

from autotown_core.cache import LocalStatsCache
from autotown_core.errors import CorruptPayload, StoreUnavailable
from autotown_core.stores.json_store import JsonControllerStore
from autotown_core.usage.merge import (
    fold_sightings,
    merge_found_controller,
    rollup_work_item,
)
from autotown_core.usage.report import parse_report
from autotown_core.usage.types import RolloutWorkItem


def _item(timestamp: datetime, boards: list[dict], **raw) -> RolloutWorkItem:
    raw_data = {
        "BoardsSeen": boards,
        "CurrentArch": "x86_64",
        "CurrentOS": "Ubuntu 15.10",
        "gcs_version": "Release-20160120.3",
    }
    raw_data.update(raw)
    return RolloutWorkItem(
        ip="203.0.113.9",
        country="nz",
        region="auk",
        city="auckland",
        lat=-36.8485,
        lon=174.7633,
        timestamp=timestamp,
        raw_data=raw_data,
    )


def _board(**fields) -> dict:
    board = {
        "CPU": "",
        "UUID": "",
        "FwHash": "f00d",
        "GitHash": "deadbeef",
        "GitTag": "Release-20160120.3",
        "Name": "Revolution",
        "UavoHash": "cafe",
    }
    board.update(fields)
    return board


def _sha(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@pytest.fixture
def controllers(tmp_path) -> JsonControllerStore:
    return JsonControllerStore(tmp_path.as_posix())


@pytest.mark.core
def test_first_sighting_creates_aggregate(controllers, ts):
    result = rollup_work_item(_item(ts(1), [_board(CPU="ABC123")]), controllers=controllers)

    identity = _sha("ABC123")
    assert result.updated == (identity,)
    stored = controllers.get_controllers([identity])[identity]
    assert stored.timestamp == ts(1)
    assert stored.oldest == ts(1)
    assert stored.count == 1
    assert stored.name == "Revolution"
    assert stored.gcs_os == "Ubuntu 15.10"
    assert stored.city == "auckland"


@pytest.mark.core
def test_second_report_advances_timestamp_and_redacts_address(controllers, ts):
    rollup_work_item(
        _item(ts(1), [_board(CPU="ABC123")], ShareIP="true"),
        controllers=controllers,
    )
    rollup_work_item(_item(ts(2), [_board(CPU="ABC123")]), controllers=controllers)

    identity = _sha("ABC123")
    stored = controllers.get_controllers([identity])[identity]
    assert stored.timestamp == ts(2)
    assert stored.oldest == ts(1)
    assert stored.count == 2
    assert stored.addr == ""


@pytest.mark.core
def test_shared_address_is_retained(controllers, ts):
    rollup_work_item(
        _item(ts(1), [_board(UUID="uuid-1")], ShareIP="true"),
        controllers=controllers,
    )
    assert controllers.get_controllers(["uuid-1"])["uuid-1"].addr == "203.0.113.9"


@pytest.mark.core
def test_copter_control_is_renamed(controllers, ts):
    rollup_work_item(
        _item(ts(1), [_board(UUID="cc-1", Name="CopterControl")]),
        controllers=controllers,
    )
    assert controllers.get_controllers(["cc-1"])["cc-1"].name == "CC3D"


@pytest.mark.core
def test_unidentified_sighting_is_skipped(controllers, ts):
    result = rollup_work_item(
        _item(ts(1), [_board(Name="Mystery"), _board(UUID="uuid-2")]),
        controllers=controllers,
    )
    assert result.sightings == 2
    assert result.skipped == 1
    assert result.updated == ("uuid-2",)
    assert [c.uuid for c in controllers.iter_controllers()] == ["uuid-2"]


@pytest.mark.core
def test_late_report_does_not_regress_timestamp(controllers, ts):
    rollup_work_item(_item(ts(5), [_board(UUID="uuid-3")]), controllers=controllers)
    rollup_work_item(
        _item(ts(2), [_board(UUID="uuid-3", GitHash="0ld")]),
        controllers=controllers,
    )

    stored = controllers.get_controllers(["uuid-3"])["uuid-3"]
    assert stored.timestamp == ts(5)
    assert stored.oldest == ts(2)
    assert stored.count == 2


@pytest.mark.core
def test_report_without_identified_boards_writes_nothing(controllers, ts, tmp_path):
    result = rollup_work_item(_item(ts(1), []), controllers=controllers)
    assert result.updated == ()
    assert list(controllers.iter_controllers()) == []
    assert not (tmp_path / "controllers" / "found_controllers.json").exists()


@pytest.mark.core
def test_redelivery_counts_again_but_keeps_times(controllers, ts):
    item = _item(ts(3), [_board(UUID="uuid-4")])
    rollup_work_item(item, controllers=controllers)
    first = controllers.get_controllers(["uuid-4"])["uuid-4"]
    rollup_work_item(item, controllers=controllers)
    second = controllers.get_controllers(["uuid-4"])["uuid-4"]

    assert second.count == first.count + 1
    assert second.timestamp == first.timestamp
    assert second.oldest == first.oldest


@pytest.mark.core
def test_count_and_oldest_are_monotonic(controllers, ts):
    days = [4, 2, 9, 9, 1, 6]
    previous_count = 0
    previous_oldest = None
    for day in days:
        rollup_work_item(_item(ts(day), [_board(UUID="uuid-5")]), controllers=controllers)
        stored = controllers.get_controllers(["uuid-5"])["uuid-5"]
        assert stored.count > previous_count
        if previous_oldest is not None:
            assert stored.oldest <= previous_oldest
        previous_count = stored.count
        previous_oldest = stored.oldest

    assert stored.timestamp == ts(9)
    assert stored.oldest == ts(1)
    assert stored.count == len(days)


@pytest.mark.core
def test_duplicate_sightings_in_one_report_fold_last_wins(ts):
    item = _item(
        ts(1),
        [
            _board(UUID="uuid-6", GitHash="aaaa"),
            _board(UUID="uuid-6", GitHash="bbbb"),
        ],
    )
    context, sightings = parse_report(item.raw_data)
    folded, skipped = fold_sightings(item, context, sightings)

    assert skipped == 0
    assert folded["uuid-6"].git_hash == "bbbb"
    assert folded["uuid-6"].count == 2
    assert folded["uuid-6"].oldest == ts(1)


@pytest.mark.core
def test_merge_without_previous_returns_current(ts):
    item = _item(ts(1), [_board(UUID="uuid-7")])
    context, sightings = parse_report(item.raw_data)
    folded, _ = fold_sightings(item, context, sightings)
    assert merge_found_controller(None, folded["uuid-7"]) is folded["uuid-7"]


@pytest.mark.core
def test_rollup_invalidates_stats_cache(controllers, ts):
    cache = LocalStatsCache()
    cache.set("results_stats", "{}", 60)
    rollup_work_item(
        _item(ts(1), [_board(UUID="uuid-8")]),
        controllers=controllers,
        cache=cache,
    )
    assert cache.get("results_stats") is None


@pytest.mark.core
def test_cache_failure_does_not_fail_rollup(controllers, ts):
    class BrokenCache(LocalStatsCache):
        def delete(self, key: str) -> None:
            raise ConnectionError("cache down")

    result = rollup_work_item(
        _item(ts(1), [_board(UUID="uuid-9")]),
        controllers=controllers,
        cache=BrokenCache(),
    )
    assert result.updated == ("uuid-9",)


@pytest.mark.core
def test_store_failure_surfaces(ts):
    class DownStore(JsonControllerStore):
        def merge_controllers(self, pending, merge):
            raise StoreUnavailable("store offline")

    with pytest.raises(StoreUnavailable):
        rollup_work_item(
            _item(ts(1), [_board(UUID="uuid-10")]),
            controllers=DownStore("memory://unused"),
        )


@pytest.mark.core
def test_malformed_raw_data_is_corrupt(controllers, ts):
    item = _item(ts(1), [])
    bad = RolloutWorkItem(
        ip=item.ip,
        country=item.country,
        region=item.region,
        city=item.city,
        lat=item.lat,
        lon=item.lon,
        timestamp=item.timestamp,
        raw_data={"BoardsSeen": {"UUID": "x"}},
    )
    with pytest.raises(CorruptPayload):
        rollup_work_item(bad, controllers=controllers)
