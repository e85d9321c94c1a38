class BatchError(Exception):
    """Base class for batch scheduling and execution errors."""


class NoScheduledBatchError(BatchError):
    """Raised when a batch is executed for a profile that has no scheduled batch."""

    def __init__(self, profile: str):
        self.profile = profile
        self.message = f"No scheduled batch for profile '{profile}'"
        super().__init__(self.message)


class InvalidBatchTransitionError(BatchError):
    """Raised when a batch status change would leave a terminal state or go backward."""

    def __init__(self, batch_id: str, current: str, target: str):
        self.batch_id = batch_id
        self.current = current
        self.target = target
        self.message = f"Batch {batch_id} cannot move from '{current}' to '{target}'"
        super().__init__(self.message)


class BatchPersistenceError(BatchError):
    """Raised when batch state could not be written to or read from the store."""

    def __init__(self, batch_id: str | None, message: str | None = None):
        self.batch_id = batch_id
        base = message if message is not None else "Failed to persist batch state"
        self.message = f"{base} (batch: {batch_id})" if batch_id else base
        super().__init__(self.message)
