from __future__ import annotations

import uuid
from typing import Callable, Mapping, Sequence

from autotown_core.queue.types import QueueMessage, QueuePublisher


class InlinePublisher(QueuePublisher):
    """Hands each published payload straight to ``handler`` in-process."""

    def __init__(self, handler: Callable[[QueueMessage], None]) -> None:
        self._handler = handler

    def publish(
        self,
        *,
        topic: str,
        data: bytes,
        attributes: Mapping[str, str] | None = None,
    ) -> str:
        message_id = f"inline-{uuid.uuid4()}"
        self._handler(
            QueueMessage(
                data=data,
                attributes=dict(attributes or {}),
                message_id=message_id,
            )
        )
        return message_id

    def publish_batch(
        self,
        *,
        topic: str,
        payloads: Sequence[bytes],
    ) -> list[str]:
        return [self.publish(topic=topic, data=data) for data in payloads]
