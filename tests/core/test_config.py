from __future__ import annotations

import pytest

from autotown_core.config import Config


@pytest.mark.core
def test_config_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QUEUE_BACKEND", "pubsub")
    monkeypatch.setenv("ROLLUP_TOPIC", "projects/p/topics/rollups")
    for name in ("FANOUT_BATCH_SIZE", "CACHE_BACKEND", "ROLLUP_ON_INGEST"):
        monkeypatch.delenv(name, raising=False)

    config = Config.from_env()

    assert config.store_backend == "json"
    assert config.queue_backend == "pubsub"
    assert config.fanout_batch_size == 100
    assert config.cache_backend == "local"
    assert config.rollup_on_ingest is True
    assert config.stats_cache_key == "results_stats"
    assert config.stats_cache_ttl_seconds == 300
    assert config.tune_rewrite_limit == 50
    assert config.controller_collection == "FoundController"


@pytest.mark.core
def test_config_requires_topic_for_pubsub(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QUEUE_BACKEND", "pubsub")
    monkeypatch.delenv("ROLLUP_TOPIC", raising=False)
    with pytest.raises(ValueError, match="ROLLUP_TOPIC"):
        Config.from_env()


@pytest.mark.core
def test_config_requires_data_root_for_json_store(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LOCAL_DATA_ROOT", raising=False)
    with pytest.raises(ValueError, match="LOCAL_DATA_ROOT"):
        Config.from_env()


@pytest.mark.core
@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("AUTOTOWN_STORE", "sqlite"),
        ("QUEUE_BACKEND", "sqs"),
        ("CACHE_BACKEND", "memcached"),
        ("FANOUT_BATCH_SIZE", "0"),
        ("FANOUT_BATCH_SIZE", "lots"),
    ],
)
def test_config_rejects_bad_values(monkeypatch: pytest.MonkeyPatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError):
        Config.from_env()


@pytest.mark.core
def test_collection_prefix(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FIRESTORE_COLLECTION_PREFIX", "staging_")
    config = Config.from_env()
    assert config.collection_prefix == "staging_"
