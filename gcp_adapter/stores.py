from __future__ import annotations

import logging

from autotown_core.cache import StatsCache, build_stats_cache
from autotown_core.config import Config
from autotown_core.stores import StoreBundle
from autotown_gcp.stores import get_store_bundle as gcp_get_store_bundle

_STORE_BUNDLE: StoreBundle | None = None
_STORE_KEY: tuple[object, ...] | None = None
_STATS_CACHE: StatsCache | None = None
_CACHE_KEY: tuple[object, ...] | None = None

logger = logging.getLogger(__name__)


def _store_key(config: Config) -> tuple[object, ...]:
    return (
        config.store_backend,
        config.local_data_root,
        config.collection_prefix,
        config.usage_collection,
        config.controller_collection,
        config.git_label_collection,
        config.tune_collection,
    )


def get_rollup_stores(config: Config) -> StoreBundle:
    global _STORE_BUNDLE, _STORE_KEY
    key = _store_key(config)
    if _STORE_BUNDLE is not None and _STORE_KEY == key:
        return _STORE_BUNDLE
    _STORE_BUNDLE = gcp_get_store_bundle(config.local_data_root or "", config=config)
    _STORE_KEY = key
    logger.info(
        "Initialized rollup stores",
        extra={"status": config.store_backend},
    )
    return _STORE_BUNDLE


def get_stats_cache(config: Config) -> StatsCache | None:
    global _STATS_CACHE, _CACHE_KEY
    key = (
        config.cache_backend,
        config.redis_host,
        config.redis_port,
        config.redis_db,
        config.redis_ssl,
    )
    if _CACHE_KEY == key:
        return _STATS_CACHE
    _STATS_CACHE = build_stats_cache(config)
    _CACHE_KEY = key
    return _STATS_CACHE


def reset_rollup_state() -> None:
    global _STORE_BUNDLE, _STORE_KEY, _STATS_CACHE, _CACHE_KEY
    _STORE_BUNDLE = None
    _STORE_KEY = None
    _STATS_CACHE = None
    _CACHE_KEY = None
