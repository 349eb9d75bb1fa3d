from __future__ import annotations

from dataclasses import dataclass

from autotown_core.errors import CorruptPayload, DispatchFailure
from autotown_core.logging import get_logger
from autotown_core.queue import QueuePublisher
from autotown_core.stores.interfaces import UsageStore
from autotown_core.usage.report import encode_work_item, work_item_from_record

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True)
class FanoutReport:
    scanned: int
    dispatched: int
    skipped: int
    batches: int


class WorkItemBatcher:
    def __init__(
        self,
        *,
        publisher: QueuePublisher,
        topic: str,
        max_batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self.publisher = publisher
        self.topic = topic
        self.max_batch_size = max_batch_size
        self.dispatched = 0
        self.batches = 0
        self._pending: list[bytes] = []

    @property
    def backlog(self) -> int:
        return len(self._pending)

    def add(self, payload: bytes) -> None:
        self._pending.append(payload)
        if len(self._pending) >= self.max_batch_size:
            self.flush()

    def flush(self) -> None:
        if not self._pending:
            return
        batch = list(self._pending)
        try:
            self.publisher.publish_batch(topic=self.topic, payloads=batch)
        except DispatchFailure:
            raise
        except Exception as exc:
            raise DispatchFailure(f"Failed to enqueue work items: {exc}") from exc
        self._pending.clear()
        self.dispatched += len(batch)
        self.batches += 1


def fan_out_usage(
    usage: UsageStore,
    publisher: QueuePublisher,
    *,
    topic: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> FanoutReport:
    """Requeue every raw usage record as a compressed rollup work item.

    Batches already handed to the queue stay there if a later dispatch fails;
    rerunning the scan duplicates them, which the rollup tolerates.
    """
    batcher = WorkItemBatcher(
        publisher=publisher,
        topic=topic,
        max_batch_size=batch_size,
    )
    scanned = 0
    skipped = 0
    for record in usage.iter_usage_records():
        scanned += 1
        try:
            item = work_item_from_record(record)
        except CorruptPayload as exc:
            logger.warning(
                "Failed to decompress record",
                extra={"record_id": record.id, "error_message": str(exc)},
            )
            skipped += 1
            continue
        batcher.add(encode_work_item(item))
    batcher.flush()

    logger.info(
        "Queued controller rollups",
        extra={
            "scanned": scanned,
            "dispatched": batcher.dispatched,
            "skipped": skipped,
            "batches": batcher.batches,
            "topic": topic,
        },
    )
    return FanoutReport(
        scanned=scanned,
        dispatched=batcher.dispatched,
        skipped=skipped,
        batches=batcher.batches,
    )
