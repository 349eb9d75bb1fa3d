"""Re-key tune results that still carry a raw board identifier."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace

from autotown_core.codec import compress, decompress
from autotown_core.errors import CorruptPayload
from autotown_core.logging import get_logger
from autotown_core.stores.interfaces import TuneResultStore
from autotown_core.usage.identity import hash_identity, is_hashed_identity
from autotown_core.usage.types import TuneResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class TuneRewriteReport:
    examined: int
    rewritten: int
    failed: int


def rewrite_tune_identity(result: TuneResult) -> TuneResult:
    payload = json.loads(decompress(result.data).decode("utf-8"))
    if not isinstance(payload, dict):
        raise CorruptPayload("Tune result body must be a JSON object")
    hashed = hash_identity(result.uuid)
    payload["uniqueId"] = hashed
    data = compress(json.dumps(payload, ensure_ascii=True).encode("utf-8"))
    return replace(result, uuid=hashed, data=data)


def rewrite_legacy_tune_identities(
    store: TuneResultStore,
    *,
    limit: int = 50,
) -> TuneRewriteReport:
    recent = store.recent_tune_results(limit)
    updated: list[TuneResult] = []
    failed = 0
    for result in recent:
        if is_hashed_identity(result.uuid):
            continue
        try:
            rewritten = rewrite_tune_identity(result)
        except (CorruptPayload, ValueError) as exc:
            logger.error(
                "Failed to rewrite tune result",
                extra={"record_id": result.id, "error_message": str(exc)},
            )
            failed += 1
            continue
        logger.info(
            "Rewriting tune identity",
            extra={
                "record_id": result.id,
                "previous_uuid": result.uuid,
                "identity": rewritten.uuid,
            },
        )
        updated.append(rewritten)

    logger.info("Updating tune results", extra={"rows": len(updated)})
    if updated:
        store.put_tune_results(updated)
    return TuneRewriteReport(
        examined=len(recent),
        rewritten=len(updated),
        failed=failed,
    )
