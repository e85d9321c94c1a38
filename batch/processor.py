"""
Batch scheduling and execution.

A batch is scheduled for a profile, then executed against a list of input
rows. Rows are handed one at a time to an external ``process_row(profile,
row)`` coroutine; a row that raises becomes a ``FailureRecord`` and the batch
moves on. State is persisted after every change and lifecycle events are
published on a ``BatchEventBus``.

Status only moves forward: scheduled -> running -> completed | failed.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from batch.events import (
    BATCH_COMPLETED,
    BATCH_FINALIZED,
    BATCH_STARTED,
    PROGRESS,
    BatchEventBus,
)
from batch.exceptions import (
    BatchPersistenceError,
    InvalidBatchTransitionError,
    NoScheduledBatchError,
)
from batch.models import (
    Batch,
    BatchLogEntry,
    BatchProgress,
    BatchRunResult,
    BatchStatus,
    BatchSummary,
    FailureRecord,
    RetryPolicy,
    RetryResult,
)
from batch.store import BatchRepository
from config import config, AppConfig
from core.logger import bind_context, get_structured_logger
from core.utils import error_message, new_id, now_ms

RowProcessor = Callable[[str, Any], Awaitable[Any]]

# States from which an out-of-band finalize may mark a batch completed.
# A batch claimed by a running execute_batch is never finalized here.
_FINALIZABLE = {BatchStatus.SCHEDULED, BatchStatus.RUNNING, BatchStatus.COMPLETED}


class BatchProcessor:
    """
    Owns the batch registry and drives batches through their lifecycle.

    The registry is private to the processor; callers get copies. Rows of
    one batch are processed strictly in order. Up to
    ``batch.max_concurrent_batches`` batches may run at the same time.
    """

    def __init__(
        self,
        repository: BatchRepository,
        process_row: RowProcessor,
        event_bus: Optional[BatchEventBus] = None,
        app_config: Optional[AppConfig] = None,
    ):
        self.repository = repository
        self.process_row = process_row
        self.event_bus = event_bus or BatchEventBus()
        self.app_config = app_config or config
        self.logger = get_structured_logger(__name__)
        self._batches: Dict[str, Batch] = {}
        self._claimed: Set[str] = set()
        self._running = asyncio.Semaphore(self.app_config.batch.max_concurrent_batches)

    # --- registry ---------------------------------------------------------

    async def load(self) -> int:
        """Restore the registry from the store. Returns the number of batches loaded."""
        batches = await self.repository.load_all()
        self._batches = {batch.id: batch for batch in batches}
        for batch in batches:
            if batch.status == BatchStatus.RUNNING:
                self.logger.warning(
                    "batch_interrupted", batch_id=batch.id, profile=batch.profile,
                    processed=batch.progress.processed, total=batch.progress.total,
                )
        self.logger.info("batches_loaded", count=len(batches))
        return len(batches)

    def get_batch(self, batch_id: str) -> Optional[Batch]:
        batch = self._batches.get(batch_id)
        return batch.model_copy(deep=True) if batch else None

    def list_batches(
        self, profile: Optional[str] = None, status: Optional[BatchStatus] = None
    ) -> List[Batch]:
        return [
            batch.model_copy(deep=True)
            for batch in self._batches.values()
            if (profile is None or batch.profile == profile)
            and (status is None or batch.status == status)
        ]

    def pending_failures(self, batch_id: str) -> List[FailureRecord]:
        """Rows of a batch still failing after its latest retry, or its original failures."""
        batch = self._batches.get(batch_id)
        if batch is None:
            return []
        if batch.retries:
            return [FailureRecord.model_validate(f) for f in batch.retries[-1].get("failures", [])]
        return [failure.model_copy(deep=True) for failure in batch.failures]

    def _find_scheduled(self, profile: str) -> Optional[Batch]:
        latest = None
        for batch in self._batches.values():
            if batch.profile != profile or batch.status != BatchStatus.SCHEDULED:
                continue
            if batch.id in self._claimed:
                continue
            if latest is None or batch.created_at >= latest.created_at:
                latest = batch
        return latest

    # --- helpers ----------------------------------------------------------

    def _transition(self, batch: Batch, target: BatchStatus) -> None:
        if not batch.status.can_transition_to(target):
            raise InvalidBatchTransitionError(batch.id, batch.status.value, target.value)
        batch.status = target
        batch.touch()

    def _log(self, batch: Batch, event: str, **data) -> None:
        batch.logs.append(BatchLogEntry(event=event, data=data))
        bind_context(self.logger, batch_id=batch.id, profile=batch.profile).info(
            f"batch_{event}", **data
        )

    async def _persist_progress(self, batch: Batch) -> None:
        """Progress writes are advisory: a failure is logged and the run continues."""
        try:
            await self.repository.save(batch)
        except BatchPersistenceError as e:
            self.logger.error("batch_progress_persist_failed", batch_id=batch.id, error=str(e))

    # --- operations -------------------------------------------------------

    async def schedule_batch_run(
        self, profile: str, batch_config: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Create a batch in ``scheduled`` state and persist it.

        Raises:
            BatchPersistenceError: if the new batch could not be stored. The
                batch is not registered in that case.
        """
        batch = Batch(id=new_id(), profile=profile, batch_config=dict(batch_config or {}))
        self._log(batch, "scheduled", batch_config=batch.batch_config)
        self._batches[batch.id] = batch
        try:
            await self.repository.save(batch)
        except BatchPersistenceError:
            del self._batches[batch.id]
            raise
        return batch.id

    async def execute_batch(self, profile: str, input_rows: Sequence[Any]) -> BatchRunResult:
        """
        Run the most recently scheduled batch of ``profile`` over ``input_rows``.

        Row failures never escape: they are collected as ``FailureRecord``s and
        the batch ends ``failed`` if there is at least one.

        Raises:
            NoScheduledBatchError: if ``profile`` has no scheduled batch.
            BatchPersistenceError: if the final state, including the failure
                list, could not be stored. The in-memory batch is finalized
                and events are emitted before this is raised.
        """
        batch = self._find_scheduled(profile)
        if batch is None:
            raise NoScheduledBatchError(profile)
        self._claimed.add(batch.id)
        try:
            async with self._running:
                return await self._run(batch, list(input_rows))
        finally:
            self._claimed.discard(batch.id)

    async def _run(self, batch: Batch, rows: List[Any]) -> BatchRunResult:
        self._transition(batch, BatchStatus.RUNNING)
        batch.input_rows = rows
        batch.progress.total = len(rows)
        self._log(batch, "started", total=len(rows))
        await self._persist_progress(batch)
        self.event_bus.emit(BATCH_STARTED, batch.id)

        results = []
        for index, row in enumerate(rows):
            try:
                result = await self.process_row(batch.profile, row)
            except Exception as e:
                failure = FailureRecord(row=row, profile=batch.profile, error=error_message(e), attempt=1)
                batch.failures.append(failure)
                batch.progress.failed += 1
                self._log(batch, "row_failure", index=index, error=failure.error)
            else:
                results.append(result)
                batch.progress.succeeded += 1
            batch.progress.processed += 1
            batch.touch()
            await self._persist_progress(batch)
            self.event_bus.emit(PROGRESS, batch.id, batch.progress.model_copy())

        self._transition(
            batch, BatchStatus.COMPLETED if not batch.failures else BatchStatus.FAILED
        )
        batch.summary = BatchSummary(
            total=len(rows),
            succeeded=batch.progress.succeeded,
            failed=batch.progress.failed,
            completed_at=now_ms(),
        )
        self._log(batch, "completed", **batch.summary.model_dump())

        persist_error = None
        try:
            await self.repository.save(batch)
        except BatchPersistenceError as e:
            self.logger.error("batch_final_persist_failed", batch_id=batch.id, error=str(e))
            persist_error = e
        self.event_bus.emit(BATCH_COMPLETED, batch.id, batch.summary.model_copy())
        if persist_error is not None:
            raise persist_error

        return BatchRunResult(
            batch_id=batch.id,
            results=results,
            failures=[failure.model_copy(deep=True) for failure in batch.failures],
        )

    def track_batch_progress(self, batch_id: str) -> Optional[BatchProgress]:
        """Copy of the batch's progress counters, or None for an unknown id."""
        batch = self._batches.get(batch_id)
        return batch.progress.model_copy() if batch else None

    async def handle_batch_completion(
        self, batch_id: str, summary: Union[BatchSummary, Dict[str, Any], None]
    ) -> Optional[Batch]:
        """
        Finalize a batch whose completion is managed outside ``execute_batch``.

        Unknown ids are ignored. A failed batch, or one that ``execute_batch``
        is still running, cannot be finalized as completed.
        """
        batch = self._batches.get(batch_id)
        if batch is None:
            self.logger.warning("batch_finalize_unknown", batch_id=batch_id)
            return None
        if batch.status not in _FINALIZABLE or batch.id in self._claimed:
            raise InvalidBatchTransitionError(batch.id, batch.status.value, BatchStatus.COMPLETED.value)

        if isinstance(summary, BatchSummary):
            summary = summary.model_copy()
        else:
            summary = BatchSummary.model_validate(summary or {})
        batch.status = BatchStatus.COMPLETED
        batch.summary = summary
        batch.touch()
        self._log(batch, "finalized", **summary.model_dump())
        await self.repository.save(batch)
        self.event_bus.emit(BATCH_FINALIZED, batch.id, summary.model_copy())
        return batch.model_copy(deep=True)

    async def retry_batch_failures(
        self, batch_id: str, retry_engine, policy: Optional[RetryPolicy] = None
    ) -> RetryResult:
        """
        Replay the failed rows of a finished batch and record the outcome.

        The batch keeps its status and its original failure list; the retry
        outcome, including the rows still failing, is appended to
        ``batch.retries``.

        Raises:
            KeyError: for an unknown batch id.
            BatchPersistenceError: if the outcome could not be stored.
        """
        batch = self._batches.get(batch_id)
        if batch is None:
            raise KeyError(batch_id)
        pending = self.pending_failures(batch_id)
        result = await retry_engine.retry_failed_submissions(pending, policy)
        batch.retries.append(
            {
                "attempted_at": now_ms(),
                "retried": len(pending),
                "succeeded": len(result.succeeded),
                "remaining": len(result.failures),
                "failures": [failure.model_dump(mode="json") for failure in result.failures],
            }
        )
        batch.touch()
        self._log(batch, "retried", succeeded=len(result.succeeded), remaining=len(result.failures))
        await self.repository.save(batch)
        return result
