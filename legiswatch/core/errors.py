"""Domain exceptions shared across the pipeline."""


class LegisWatchError(Exception):
    """Base class for pipeline errors."""


class AdapterTimeoutError(LegisWatchError):
    """A source adapter call exceeded its deadline."""

    def __init__(self, source_id: str, operation: str, timeout: float) -> None:
        super().__init__(
            f"Adapter '{source_id}' timed out after {timeout:g}s during {operation}"
        )
        self.source_id = source_id
        self.operation = operation
        self.timeout = timeout


class BatchAlreadyRunningError(LegisWatchError):
    """Another release batch for the same period and type is running."""


class InvalidReviewTransition(LegisWatchError):
    """A review queue entry was moved along an edge the state machine forbids."""


class NotificationError(LegisWatchError):
    """Raised when a notification fails to send."""
