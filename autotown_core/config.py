import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    store_backend: str
    local_data_root: str | None
    collection_prefix: str
    usage_collection: str
    controller_collection: str
    git_label_collection: str
    tune_collection: str
    queue_backend: str
    rollup_topic: str | None
    fanout_batch_size: int
    rollup_on_ingest: bool
    cache_backend: str
    redis_host: str | None
    redis_port: int
    redis_db: int
    redis_ssl: bool
    redis_password: str | None
    stats_cache_key: str
    stats_cache_ttl_seconds: int
    tune_rewrite_limit: int

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        store_backend = os.getenv("AUTOTOWN_STORE", "json").strip().lower()
        if store_backend not in {"json", "firestore"}:
            raise ValueError("AUTOTOWN_STORE must be one of: firestore, json")
        local_data_root = os.getenv("LOCAL_DATA_ROOT")
        if store_backend == "json" and not local_data_root:
            missing.append("LOCAL_DATA_ROOT")

        queue_backend = os.getenv("QUEUE_BACKEND", "pubsub").strip().lower()
        if queue_backend not in {"pubsub", "inline"}:
            raise ValueError("QUEUE_BACKEND must be one of: inline, pubsub")
        rollup_topic = os.getenv("ROLLUP_TOPIC")
        if queue_backend == "pubsub" and not rollup_topic:
            missing.append("ROLLUP_TOPIC")

        cache_backend = os.getenv("CACHE_BACKEND", "local").strip().lower()
        if cache_backend not in {"none", "local", "redis"}:
            raise ValueError("CACHE_BACKEND must be one of: local, none, redis")
        redis_host = os.getenv("REDIS_HOST")
        if cache_backend == "redis" and not redis_host:
            missing.append("REDIS_HOST")

        env = require("ENV")
        log_level = os.getenv("LOG_LEVEL", "INFO")
        fanout_batch_size = _parse_int("FANOUT_BATCH_SIZE", "100")
        if fanout_batch_size <= 0:
            raise ValueError("FANOUT_BATCH_SIZE must be positive")

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            env=env,
            log_level=log_level,
            store_backend=store_backend,
            local_data_root=local_data_root,
            collection_prefix=os.getenv("FIRESTORE_COLLECTION_PREFIX", "").strip(),
            usage_collection=os.getenv("USAGE_COLLECTION", "UsageStat"),
            controller_collection=os.getenv(
                "CONTROLLER_COLLECTION", "FoundController"
            ),
            git_label_collection=os.getenv("GIT_LABEL_COLLECTION", "GitLabel"),
            tune_collection=os.getenv("TUNE_COLLECTION", "TuneResults"),
            queue_backend=queue_backend,
            rollup_topic=rollup_topic,
            fanout_batch_size=fanout_batch_size,
            rollup_on_ingest=_parse_bool(os.getenv("ROLLUP_ON_INGEST"), True),
            cache_backend=cache_backend,
            redis_host=redis_host,
            redis_port=_parse_int("REDIS_PORT", "6379"),
            redis_db=_parse_int("REDIS_DB", "0"),
            redis_ssl=os.getenv("REDIS_SSL", "0") == "1",
            redis_password=os.getenv("REDIS_PASSWORD"),
            stats_cache_key=os.getenv("STATS_CACHE_KEY", "results_stats"),
            stats_cache_ttl_seconds=_parse_int("STATS_CACHE_TTL_SECONDS", "300"),
            tune_rewrite_limit=_parse_int("TUNE_REWRITE_LIMIT", "50"),
        )


def _parse_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
