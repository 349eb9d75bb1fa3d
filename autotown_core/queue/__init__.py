from autotown_core.queue.inline import InlinePublisher
from autotown_core.queue.types import QueueMessage, QueuePublisher

__all__ = ["InlinePublisher", "QueueMessage", "QueuePublisher"]
