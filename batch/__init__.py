"""
Batch scheduling, execution, persistence and retries.
"""

from .events import BatchEvent, BatchEventBus
from .exceptions import (
    BatchError,
    BatchPersistenceError,
    InvalidBatchTransitionError,
    NoScheduledBatchError,
)
from .models import (
    Batch,
    BatchProgress,
    BatchRunResult,
    BatchStatus,
    BatchSummary,
    FailureRecord,
    RetryPolicy,
    RetryResult,
)
from .processor import BatchProcessor
from .retry import RetryEngine
from .store import (
    BatchRepository,
    BatchStore,
    InMemoryBatchStore,
    JsonFileBatchStore,
    SqliteBatchStore,
    create_batch_store,
)

__all__ = [
    "BatchEvent",
    "BatchEventBus",
    "BatchError",
    "BatchPersistenceError",
    "InvalidBatchTransitionError",
    "NoScheduledBatchError",
    "Batch",
    "BatchProgress",
    "BatchRunResult",
    "BatchStatus",
    "BatchSummary",
    "FailureRecord",
    "RetryPolicy",
    "RetryResult",
    "BatchProcessor",
    "RetryEngine",
    "BatchRepository",
    "BatchStore",
    "InMemoryBatchStore",
    "JsonFileBatchStore",
    "SqliteBatchStore",
    "create_batch_store",
]
