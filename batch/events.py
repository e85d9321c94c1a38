"""
Lifecycle notifications for batches.

Listeners are plain callables taking a ``BatchEvent``. Delivery is
synchronous, in subscription order, and fire-and-forget: a failing listener
is logged and skipped.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

BATCH_STARTED = "batch_started"
PROGRESS = "progress"
BATCH_COMPLETED = "batch_completed"
BATCH_FINALIZED = "batch_finalized"

EVENT_NAMES = (BATCH_STARTED, PROGRESS, BATCH_COMPLETED, BATCH_FINALIZED)


@dataclass(frozen=True)
class BatchEvent:
    name: str
    batch_id: str
    payload: Any = None


Listener = Callable[[BatchEvent], None]


class BatchEventBus:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, name: str, batch_id: str, payload: Any = None) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown batch event: {name}")
        event = BatchEvent(name=name, batch_id=batch_id, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.warning(f"Listener {listener!r} failed on '{name}' for batch {batch_id}: {e}")
