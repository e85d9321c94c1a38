"""
Durable storage for batch state.

A store only has to offer ``save(batch_id, state)`` and ``load_all()``.
``BatchRepository`` sits in front of it and pushes every write through a
single lock, so read-modify-write cycles against the same backend are never
interleaved.
"""

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Protocol, Tuple, Union

from pydantic import ValidationError

from batch.exceptions import BatchPersistenceError
from batch.models import Batch
from core import database

logger = logging.getLogger(__name__)

StoredBatch = Tuple[str, Dict[str, Any]]


class BatchStore(Protocol):
    """Protocol for batch state backends."""

    def save(self, batch_id: str, state: Dict[str, Any]) -> None:
        ...

    def load_all(self) -> List[StoredBatch]:
        ...


class InMemoryBatchStore:
    """Keeps copies of batch state in a dict. Used for tests and throwaway runs."""

    def __init__(self):
        self.states: Dict[str, Dict[str, Any]] = {}

    def save(self, batch_id: str, state: Dict[str, Any]) -> None:
        self.states[batch_id] = copy.deepcopy(state)

    def load_all(self) -> List[StoredBatch]:
        return [(batch_id, copy.deepcopy(state)) for batch_id, state in self.states.items()]


class SqliteBatchStore:
    """Stores one JSON document per batch in the ``batches`` table."""

    def __init__(self, db_file: str):
        self.db_file = db_file
        self.conn = database.setup_database(db_file)

    def save(self, batch_id: str, state: Dict[str, Any]) -> None:
        database.upsert_batch_state(
            batch_id,
            state.get("profile", ""),
            state.get("status", ""),
            json.dumps(state, ensure_ascii=False),
            state.get("updated_at", 0),
            self.conn,
        )

    def load_all(self) -> List[StoredBatch]:
        return [
            (batch_id, json.loads(state_json))
            for batch_id, state_json in database.get_batch_states(self.conn)
        ]

    def close(self) -> None:
        self.conn.close()
        logger.info("Database connection closed.")


class JsonFileBatchStore:
    """Keeps all batches in one JSON file as a list of ``[id, state]`` pairs."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.states: Dict[str, Dict[str, Any]] = dict(self._read())

    def _read(self) -> List[StoredBatch]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return [(entry[0], entry[1]) for entry in json.load(f)]
        except (json.JSONDecodeError, IOError, IndexError, TypeError) as e:
            logger.warning(f"Could not load batch state from {self.path}: {e}")
            return []

    def save(self, batch_id: str, state: Dict[str, Any]) -> None:
        self.states[batch_id] = copy.deepcopy(state)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([[k, v] for k, v in self.states.items()], f, ensure_ascii=False)
        tmp_path.replace(self.path)

    def load_all(self) -> List[StoredBatch]:
        return [(batch_id, copy.deepcopy(state)) for batch_id, state in self.states.items()]


def create_batch_store(app_config) -> BatchStore:
    """Builds the store selected by ``session.store_backend``."""
    backend = app_config.session.store_backend
    if backend == "sqlite":
        return SqliteBatchStore(app_config.session.db_file)
    if backend == "json":
        return JsonFileBatchStore(app_config.session.state_file)
    return InMemoryBatchStore()


class BatchRepository:
    """Serializes batch writes to a store and converts state to and from models."""

    def __init__(self, store: BatchStore):
        self.store = store
        self._write_lock = asyncio.Lock()

    async def save(self, batch: Batch) -> None:
        state = batch.model_dump(mode="json")
        async with self._write_lock:
            try:
                await asyncio.to_thread(self.store.save, batch.id, state)
            except Exception as e:
                raise BatchPersistenceError(batch.id, f"Failed to persist batch state: {e}") from e

    async def load_all(self) -> List[Batch]:
        async with self._write_lock:
            try:
                entries = await asyncio.to_thread(self.store.load_all)
            except Exception as e:
                raise BatchPersistenceError(None, f"Failed to load batch state: {e}") from e
        batches = []
        for batch_id, state in entries:
            try:
                batches.append(Batch.model_validate(state))
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable stored batch {batch_id}: {e}")
        return batches
