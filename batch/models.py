"""
Pydantic models for batch state.

A ``Batch`` is persisted as ``model_dump(mode="json")`` after every state
change and rebuilt with ``model_validate`` on startup.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.utils import now_ms


class BatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)

    def can_transition_to(self, target: "BatchStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    BatchStatus.SCHEDULED: {BatchStatus.RUNNING},
    BatchStatus.RUNNING: {BatchStatus.COMPLETED, BatchStatus.FAILED},
    BatchStatus.COMPLETED: set(),
    BatchStatus.FAILED: set(),
}


class BatchProgress(BaseModel):
    total: int = Field(default=0, ge=0)
    processed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    succeeded: int = Field(default=0, ge=0)


class BatchSummary(BaseModel):
    """End-of-run totals. Callers finalizing a batch themselves may add extra keys."""

    model_config = ConfigDict(extra="allow")

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    completed_at: int = Field(default_factory=now_ms)


class FailureRecord(BaseModel):
    row: Any = None
    profile: str
    error: str
    attempt: int = Field(default=1, ge=1)


class BatchLogEntry(BaseModel):
    timestamp: int = Field(default_factory=now_ms)
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)

    @classmethod
    def from_config(cls, retry_config) -> "RetryPolicy":
        return cls(
            max_attempts=retry_config.max_attempts,
            retry_delay_ms=retry_config.retry_delay_ms,
        )


class Batch(BaseModel):
    id: str
    profile: str
    batch_config: Dict[str, Any] = Field(default_factory=dict)
    input_rows: List[Any] = Field(default_factory=list)
    status: BatchStatus = BatchStatus.SCHEDULED
    progress: BatchProgress = Field(default_factory=BatchProgress)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    logs: List[BatchLogEntry] = Field(default_factory=list)
    summary: Optional[BatchSummary] = None
    failures: List[FailureRecord] = Field(default_factory=list)
    retries: List[Dict[str, Any]] = Field(default_factory=list)

    def touch(self) -> None:
        self.updated_at = now_ms()


@dataclass
class BatchRunResult:
    """Outcome of one ``execute_batch`` call."""

    batch_id: str
    results: List[Any] = field(default_factory=list)
    failures: List[FailureRecord] = field(default_factory=list)


@dataclass
class RetryResult:
    """Outcome of replaying failed rows."""

    succeeded: List[Any] = field(default_factory=list)
    failures: List[FailureRecord] = field(default_factory=list)
