"""Unit tests for batch scheduling, execution, finalization and retries."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from batch.events import BATCH_COMPLETED, BATCH_FINALIZED, BATCH_STARTED, PROGRESS
from batch.exceptions import (
    BatchPersistenceError,
    InvalidBatchTransitionError,
    NoScheduledBatchError,
)
from batch.models import Batch, BatchStatus, BatchSummary, RetryPolicy
from batch.processor import BatchProcessor
from batch.retry import RetryEngine
from batch.store import BatchRepository, InMemoryBatchStore


class FlakyStore(InMemoryBatchStore):
    """In-memory store whose n-th saves (1-based) raise."""

    def __init__(self, failing_calls=()):
        super().__init__()
        self.failing_calls = set(failing_calls)
        self.calls = 0

    def save(self, batch_id, state):
        self.calls += 1
        if self.calls in self.failing_calls:
            raise OSError(f"write #{self.calls} failed")
        super().save(batch_id, state)


async def echo_row(profile, row):
    if row.get("fail"):
        raise ValueError(f"cannot submit {row['email']}")
    return {"profile": profile, "row": row, "status": "success"}


@pytest.fixture
def store():
    return InMemoryBatchStore()


@pytest.fixture
def events():
    return []


@pytest.fixture
def processor(store, events, app_config):
    proc = BatchProcessor(BatchRepository(store), echo_row, app_config=app_config)
    proc.event_bus.subscribe(events.append)
    return proc


ROWS = [
    {"email": "a@example.com"},
    {"email": "b@example.com", "fail": True},
    {"email": "c@example.com"},
]


@pytest.mark.asyncio
async def test_schedule_creates_persisted_scheduled_batch(processor, store):
    batch_id = await processor.schedule_batch_run("default", {"source": "leads.csv"})

    batch = processor.get_batch(batch_id)
    assert batch.status == BatchStatus.SCHEDULED
    assert batch.batch_config == {"source": "leads.csv"}
    assert batch.logs[0].event == "scheduled"
    assert store.states[batch_id]["status"] == "scheduled"


@pytest.mark.asyncio
async def test_happy_path(processor, store, events):
    batch_id = await processor.schedule_batch_run("default")

    result = await processor.execute_batch("default", [ROWS[0], ROWS[2]])

    batch = processor.get_batch(batch_id)
    assert result.batch_id == batch_id
    assert len(result.results) == 2 and result.failures == []
    assert batch.status == BatchStatus.COMPLETED
    assert batch.progress.model_dump() == {"total": 2, "processed": 2, "failed": 0, "succeeded": 2}
    assert (batch.summary.total, batch.summary.succeeded, batch.summary.failed) == (2, 2, 0)
    assert store.states[batch_id]["status"] == "completed"
    assert [e.name for e in events] == [BATCH_STARTED, PROGRESS, PROGRESS, BATCH_COMPLETED]
    assert [e.payload.processed for e in events if e.name == PROGRESS] == [1, 2]


@pytest.mark.asyncio
async def test_one_failing_row_fails_the_batch(processor, store):
    batch_id = await processor.schedule_batch_run("default")

    result = await processor.execute_batch("default", ROWS)

    batch = processor.get_batch(batch_id)
    assert batch.status == BatchStatus.FAILED
    assert len(result.results) == 2
    assert len(batch.failures) == 1
    failure = batch.failures[0]
    assert failure.row == ROWS[1]
    assert failure.profile == "default"
    assert failure.error == "cannot submit b@example.com"
    assert failure.attempt == 1
    assert batch.progress.processed == batch.progress.succeeded + batch.progress.failed == 3
    assert batch.progress.total == 3
    assert len(store.states[batch_id]["failures"]) == 1


@pytest.mark.asyncio
async def test_no_scheduled_batch(processor):
    with pytest.raises(NoScheduledBatchError) as exc_info:
        await processor.execute_batch("nobody", ROWS)
    assert exc_info.value.profile == "nobody"


@pytest.mark.asyncio
async def test_batch_cannot_be_executed_twice(processor):
    await processor.schedule_batch_run("default")
    await processor.execute_batch("default", [ROWS[0]])

    with pytest.raises(NoScheduledBatchError):
        await processor.execute_batch("default", [ROWS[0]])


@pytest.mark.asyncio
async def test_most_recent_scheduled_batch_runs_first(processor):
    older = await processor.schedule_batch_run("default")
    newer = await processor.schedule_batch_run("default")

    result = await processor.execute_batch("default", [ROWS[0]])

    assert result.batch_id == newer
    assert processor.get_batch(older).status == BatchStatus.SCHEDULED


@pytest.mark.asyncio
async def test_concurrent_executions_do_not_pick_the_same_batch(processor):
    await processor.schedule_batch_run("default")

    outcomes = await asyncio.gather(
        processor.execute_batch("default", [ROWS[0]]),
        processor.execute_batch("default", [ROWS[0]]),
        return_exceptions=True,
    )

    assert sum(isinstance(o, NoScheduledBatchError) for o in outcomes) == 1


@pytest.mark.asyncio
async def test_concurrent_batch_limit(store, app_config):
    app_config.batch.max_concurrent_batches = 1
    active = {"now": 0, "peak": 0}

    async def slow_row(profile, row):
        active["now"] += 1
        active["peak"] = max(active["peak"], active["now"])
        await asyncio.sleep(0)
        active["now"] -= 1

    proc = BatchProcessor(BatchRepository(store), slow_row, app_config=app_config)
    await proc.schedule_batch_run("a")
    await proc.schedule_batch_run("b")

    await asyncio.gather(proc.execute_batch("a", [1, 2]), proc.execute_batch("b", [1, 2]))

    assert active["peak"] == 1


@pytest.mark.asyncio
async def test_schedule_persistence_failure_does_not_register(app_config):
    proc = BatchProcessor(BatchRepository(FlakyStore(failing_calls={1})), echo_row, app_config=app_config)

    with pytest.raises(BatchPersistenceError):
        await proc.schedule_batch_run("default")

    assert proc.list_batches() == []


@pytest.mark.asyncio
async def test_progress_write_failure_does_not_stop_the_run(app_config):
    # 1: schedule, 2: started, 3: after row 1, 4: final
    flaky = FlakyStore(failing_calls={2, 3})
    proc = BatchProcessor(BatchRepository(flaky), echo_row, app_config=app_config)
    batch_id = await proc.schedule_batch_run("default")

    await proc.execute_batch("default", [ROWS[0]])

    assert flaky.states[batch_id]["status"] == "completed"


@pytest.mark.asyncio
async def test_final_write_failure_is_raised_after_completion_event(app_config, events):
    flaky = FlakyStore(failing_calls={4})
    proc = BatchProcessor(BatchRepository(flaky), echo_row, app_config=app_config)
    proc.event_bus.subscribe(events.append)
    batch_id = await proc.schedule_batch_run("default")

    with pytest.raises(BatchPersistenceError):
        await proc.execute_batch("default", [ROWS[0]])

    assert events[-1].name == BATCH_COMPLETED
    assert proc.get_batch(batch_id).status == BatchStatus.COMPLETED


@pytest.mark.asyncio
async def test_track_batch_progress_returns_a_copy(processor):
    batch_id = await processor.schedule_batch_run("default")

    progress = processor.track_batch_progress(batch_id)
    progress.processed = 99

    assert processor.track_batch_progress(batch_id).processed == 0
    assert processor.track_batch_progress("missing") is None


@pytest.mark.asyncio
async def test_handle_batch_completion(processor, events, store):
    batch_id = await processor.schedule_batch_run("default")

    finalized = await processor.handle_batch_completion(batch_id, {"total": 5, "succeeded": 5, "failed": 0})

    assert finalized.status == BatchStatus.COMPLETED
    assert finalized.summary.total == 5
    assert store.states[batch_id]["status"] == "completed"
    assert events[-1].name == BATCH_FINALIZED
    assert isinstance(events[-1].payload, BatchSummary)


@pytest.mark.asyncio
async def test_handle_batch_completion_edge_cases(processor):
    assert await processor.handle_batch_completion("missing", {}) is None

    batch_id = await processor.schedule_batch_run("default")
    await processor.execute_batch("default", [ROWS[1]])

    with pytest.raises(InvalidBatchTransitionError):
        await processor.handle_batch_completion(batch_id, {"total": 1})
    assert processor.get_batch(batch_id).status == BatchStatus.FAILED


@pytest.mark.asyncio
async def test_load_restores_registry(store, app_config):
    store.save("old", Batch(id="old", profile="default", status=BatchStatus.FAILED).model_dump(mode="json"))
    store.save("cut", Batch(id="cut", profile="default", status=BatchStatus.RUNNING).model_dump(mode="json"))
    proc = BatchProcessor(BatchRepository(store), echo_row, app_config=app_config)

    assert await proc.load() == 2
    assert [b.id for b in proc.list_batches(status=BatchStatus.FAILED)] == ["old"]
    assert proc.get_batch("cut").status == BatchStatus.RUNNING


@pytest.mark.asyncio
async def test_retry_batch_failures_records_outcome(processor, store, app_config):
    batch_id = await processor.schedule_batch_run("default")
    await processor.execute_batch("default", ROWS)

    process_row = AsyncMock(side_effect=[{"status": "success"}])
    engine = RetryEngine(process_row, sleep=AsyncMock(), app_config=app_config)
    result = await processor.retry_batch_failures(batch_id, engine, RetryPolicy(max_attempts=3, retry_delay_ms=0))

    batch = processor.get_batch(batch_id)
    assert len(result.succeeded) == 1 and result.failures == []
    process_row.assert_awaited_once_with("default", ROWS[1])
    assert batch.status == BatchStatus.FAILED
    assert len(batch.failures) == 1
    assert batch.retries[-1]["succeeded"] == 1
    assert batch.retries[-1]["remaining"] == 0
    assert processor.pending_failures(batch_id) == []
    assert store.states[batch_id]["retries"][-1]["retried"] == 1


@pytest.mark.asyncio
async def test_retry_batch_failures_keeps_remaining_failures(processor, app_config):
    batch_id = await processor.schedule_batch_run("default")
    await processor.execute_batch("default", ROWS)

    engine = RetryEngine(AsyncMock(side_effect=RuntimeError("still down")), sleep=AsyncMock(), app_config=app_config)
    await processor.retry_batch_failures(batch_id, engine, RetryPolicy(max_attempts=2, retry_delay_ms=0))

    pending = processor.pending_failures(batch_id)
    assert len(pending) == 1
    assert pending[0].error == "still down"
    assert pending[0].attempt == 3


@pytest.mark.asyncio
async def test_retry_unknown_batch(processor, app_config):
    engine = RetryEngine(AsyncMock(), sleep=AsyncMock(), app_config=app_config)
    with pytest.raises(KeyError):
        await processor.retry_batch_failures("missing", engine)


@pytest.mark.asyncio
async def test_finalize_is_refused_while_the_batch_runs(store, events, app_config):
    refusals = []

    async def finalize_during_row(profile, row):
        try:
            await proc.handle_batch_completion(batch_id, {"total": 2})
        except InvalidBatchTransitionError as e:
            refusals.append(e)
        return row

    proc = BatchProcessor(BatchRepository(store), finalize_during_row, app_config=app_config)
    proc.event_bus.subscribe(events.append)
    batch_id = await proc.schedule_batch_run("default")

    result = await proc.execute_batch("default", [ROWS[0], ROWS[2]])

    assert len(refusals) == 2
    assert len(result.results) == 2 and result.failures == []
    batch = proc.get_batch(batch_id)
    assert batch.status == BatchStatus.COMPLETED
    assert batch.summary.total == 2
    assert store.states[batch_id]["status"] == "completed"
    assert events[-1].name == BATCH_COMPLETED
    assert BATCH_FINALIZED not in [e.name for e in events]


@pytest.mark.asyncio
async def test_interrupted_running_batch_can_be_finalized(store, app_config):
    store.save("cut", Batch(id="cut", profile="default", status=BatchStatus.RUNNING).model_dump(mode="json"))
    proc = BatchProcessor(BatchRepository(store), echo_row, app_config=app_config)
    await proc.load()

    finalized = await proc.handle_batch_completion("cut", {"total": 1})

    assert finalized.status == BatchStatus.COMPLETED
