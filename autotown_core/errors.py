class AutotownError(Exception):
    """Base error for Autotown."""


class RecoverableError(AutotownError):
    """Indicates the operation can be retried safely."""


class PermanentError(AutotownError):
    """Indicates the operation should not be retried."""


class ValidationError(AutotownError):
    """Input validation failure."""


class CorruptPayload(PermanentError):
    """Compressed or JSON payload could not be decoded."""


class StoreUnavailable(RecoverableError):
    """Reading from or writing to the backing store failed."""


class DispatchFailure(RecoverableError):
    """Work items could not be handed to the queue."""
