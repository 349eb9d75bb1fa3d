import json
import os
import time
import uuid
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import StreamingResponse

from autotown_core.config import Config, get_config
from autotown_core.errors import (
    CorruptPayload,
    PermanentError,
    RecoverableError,
    StoreUnavailable,
    ValidationError,
)
from autotown_core.logging import configure_logging, get_logger
from autotown_core.queue import InlinePublisher, QueueMessage, QueuePublisher
from autotown_core.services.fastapi_scaffolding import (
    HealthResponse,
    add_correlation_id_middleware,
    build_health_response,
)
from autotown_core.usage.export import iter_controller_csv
from autotown_core.usage.fanout import fan_out_usage
from autotown_core.usage.ingest import build_usage_record
from autotown_core.usage.merge import RollupResult, rollup_work_item
from autotown_core.usage.report import (
    decode_work_item,
    encode_work_item,
    work_item_from_record,
)
from autotown_core.usage.summary import load_stats_summary
from autotown_core.usage.tunes import rewrite_legacy_tune_identities
from autotown_core.usage.types import GitLabel
from gcp_adapter.queue_pubsub import PubSubPublisher, parse_pubsub_push
from gcp_adapter.stores import get_rollup_stores, get_stats_cache

SERVICE_NAME = "autotown-rollup"
INLINE_TOPIC = "inline"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV"),
    version=os.getenv("AUTOTOWN_VERSION"),
)
logger = get_logger(__name__)

app = FastAPI()
add_correlation_id_middleware(app)

_pubsub_publisher: PubSubPublisher | None = None


def _get_config() -> Config:
    try:
        return get_config()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _rollup_topic(config: Config) -> str:
    if config.queue_backend == "inline":
        return config.rollup_topic or INLINE_TOPIC
    if not config.rollup_topic:
        raise HTTPException(status_code=500, detail="ROLLUP_TOPIC is required")
    return config.rollup_topic


def _get_publisher(config: Config) -> QueuePublisher:
    global _pubsub_publisher
    if config.queue_backend == "inline":
        return InlinePublisher(_inline_delivery)
    if _pubsub_publisher is None:
        _pubsub_publisher = PubSubPublisher()
    return _pubsub_publisher


def _apply_work_item(data: bytes, config: Config) -> RollupResult:
    item = decode_work_item(data)
    return rollup_work_item(
        item,
        controllers=get_rollup_stores(config).controllers,
        cache=get_stats_cache(config),
        cache_key=config.stats_cache_key,
    )


def _inline_delivery(message: QueueMessage) -> None:
    try:
        _apply_work_item(message.data, get_config())
    except PermanentError as exc:
        logger.warning(
            "Dropping undecodable work item",
            extra={"error_code": "CORRUPT_PAYLOAD", "error_message": str(exc)},
        )


def _deliver(
    data: bytes,
    request: Request,
    *,
    ack_corrupt: bool = False,
    message_id: str | None = None,
) -> Response:
    config = _get_config()
    started = time.monotonic()
    try:
        result = _apply_work_item(data, config)
    except CorruptPayload as exc:
        logger.warning(
            "Rejected rollup work item",
            extra={
                "correlation_id": request.state.correlation_id,
                "record_id": message_id,
                "error_code": "CORRUPT_PAYLOAD",
                "error_message": str(exc),
            },
        )
        if ack_corrupt:
            # Pub/Sub push redelivers anything but a 2xx.
            return Response(status_code=204)
        raise HTTPException(status_code=400, detail="error decoding work item") from exc
    except RecoverableError as exc:
        logger.exception(
            "Error updating controller records",
            extra={
                "correlation_id": request.state.correlation_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info(
        "Rollup applied",
        extra={
            "correlation_id": request.state.correlation_id,
            "identities": list(result.updated),
            "sightings": result.sightings,
            "skipped": result.skipped,
            "duration_ms": int((time.monotonic() - started) * 1000),
        },
    )
    return Response(status_code=204)


def _client_addr(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return ""


def _load_git_labels(config: Config) -> list[GitLabel]:
    try:
        return get_rollup_stores(config).git_labels.load_git_labels()
    except StoreUnavailable as exc:
        logger.warning(
            "Couldn't resolve git labels",
            extra={"error_message": str(exc)},
        )
        return []


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    try:
        config = get_config()
    except ValueError:
        config = None
    return build_health_response(SERVICE_NAME, config=config)


@app.post("/admin/updateControllers", status_code=204)
async def update_controllers(request: Request) -> Response:
    config = _get_config()
    topic = _rollup_topic(config)
    try:
        report = fan_out_usage(
            get_rollup_stores(config).usage,
            _get_publisher(config),
            topic=topic,
            batch_size=config.fanout_batch_size,
        )
    except RecoverableError as exc:
        logger.exception(
            "Error queueing controller rollups",
            extra={
                "correlation_id": request.state.correlation_id,
                "topic": topic,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail="error queueing") from exc
    logger.info(
        "Controller fan-out finished",
        extra={
            "correlation_id": request.state.correlation_id,
            "scanned": report.scanned,
            "dispatched": report.dispatched,
            "skipped": report.skipped,
            "batches": report.batches,
        },
    )
    return Response(status_code=204)


@app.post("/asyncRollup", status_code=204)
async def async_rollup(request: Request) -> Response:
    body = await request.body()
    return _deliver(body, request)


@app.post("/asyncRollup/push", status_code=204)
async def async_rollup_push(request: Request) -> Response:
    try:
        body = await request.json()
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid Pub/Sub push payload")
    try:
        envelope = parse_pubsub_push(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _deliver(
        envelope.message.data,
        request,
        ack_corrupt=True,
        message_id=envelope.message.message_id,
    )


@app.get("/admin/exportBoards")
async def export_boards(request: Request) -> StreamingResponse:
    config = _get_config()
    labels = _load_git_labels(config)
    try:
        controllers = list(get_rollup_stores(config).controllers.iter_controllers())
    except StoreUnavailable as exc:
        logger.exception(
            "Error reading controller records",
            extra={
                "correlation_id": request.state.correlation_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info(
        "Exporting controller records",
        extra={"correlation_id": request.state.correlation_id, "rows": len(controllers)},
    )
    return StreamingResponse(
        iter_controller_csv(controllers, labels),
        media_type="text/plain",
    )


@app.post("/admin/rewriteUUIDs", status_code=204)
async def rewrite_uuids(request: Request) -> Response:
    config = _get_config()
    try:
        report = rewrite_legacy_tune_identities(
            get_rollup_stores(config).tunes,
            limit=config.tune_rewrite_limit,
        )
    except StoreUnavailable as exc:
        logger.exception(
            "Error updating tune records",
            extra={
                "correlation_id": request.state.correlation_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info(
        "Tune identity rewrite finished",
        extra={
            "correlation_id": request.state.correlation_id,
            "rows": report.rewritten,
            "skipped": report.failed,
        },
    )
    return Response(status_code=204)


@app.post("/usageDetails", status_code=204)
async def usage_details(request: Request) -> Response:
    config = _get_config()
    body = await request.body()
    try:
        record = build_usage_record(
            body,
            addr=_client_addr(request),
            country=request.headers.get("x-appengine-country", ""),
            region=request.headers.get("x-appengine-region", ""),
            city=request.headers.get("x-appengine-city", ""),
            city_lat_long=request.headers.get("x-appengine-citylatlong"),
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stores = get_rollup_stores(config)
    try:
        record_id = stores.usage.add_usage_record(record)
    except StoreUnavailable as exc:
        logger.exception(
            "Error storing usage record",
            extra={
                "correlation_id": request.state.correlation_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    if config.rollup_on_ingest:
        # The stored record is picked up again by the next full fan-out.
        try:
            _get_publisher(config).publish(
                topic=_rollup_topic(config),
                data=encode_work_item(work_item_from_record(record)),
                attributes={"record_id": record_id},
            )
        except Exception as exc:
            logger.error(
                "Error queueing usage rollup",
                extra={
                    "correlation_id": request.state.correlation_id,
                    "record_id": record_id,
                    "error_message": str(exc),
                },
            )
    logger.info(
        "Usage record stored",
        extra={
            "request_id": str(uuid.uuid4()),
            "correlation_id": request.state.correlation_id,
            "record_id": record_id,
        },
    )
    return Response(status_code=204)


@app.get("/stats/summary")
async def stats_summary(request: Request) -> dict[str, Any]:
    config = _get_config()
    try:
        return load_stats_summary(
            get_rollup_stores(config).controllers,
            cache=get_stats_cache(config),
            key=config.stats_cache_key,
            ttl_seconds=config.stats_cache_ttl_seconds,
        )
    except StoreUnavailable as exc:
        logger.exception(
            "Error building stats summary",
            extra={
                "correlation_id": request.state.correlation_id,
                "error_message": str(exc),
            },
        )
        raise HTTPException(status_code=500, detail=str(exc)) from exc
