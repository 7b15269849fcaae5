# app/checkpoint/store.py
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from app.db import db_session
from app.errors import CollaboratorError, StageSelectionError
from app.intake.state import ConversationState
from app.models import ConversationCheckpoint

logger = logging.getLogger(__name__)


def _load_state(thread_id: str, data) -> ConversationState:
    try:
        if isinstance(data, str):
            return ConversationState.model_validate_json(data)
        return ConversationState.model_validate(data)
    except ValidationError as e:
        raise StageSelectionError(f"stored state for thread {thread_id!r} is corrupted: {e}") from e


class CheckpointStore(ABC):
    """
    Key-value store of ConversationState keyed by thread id.

    Only per-key atomicity is expected. Callers serialize turns on the
    same thread with ThreadLocks.
    """

    @abstractmethod
    def get(self, thread_id: str) -> Optional[ConversationState]:
        ...

    @abstractmethod
    def put(self, thread_id: str, state: ConversationState) -> None:
        ...

    @abstractmethod
    def delete(self, thread_id: str) -> None:
        ...


class InMemoryCheckpointStore(CheckpointStore):
    """
    Process-local store with explicit expiry.

    - entries older than `ttl_seconds` (since last write) are dropped on read
    - once more than `max_threads` are held, the least recently written go first

    States are kept as JSON so nobody can mutate a stored state in place.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = 86400,
        max_threads: Optional[int] = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_threads = max_threads
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, thread_id: str) -> Optional[ConversationState]:
        with self._lock:
            entry = self._entries.get(thread_id)
            if entry is None:
                return None
            payload, written_at = entry
            if self._expired(written_at):
                logger.info("Checkpoint for thread %s expired", thread_id)
                del self._entries[thread_id]
                return None
        return _load_state(thread_id, payload)

    def put(self, thread_id: str, state: ConversationState) -> None:
        payload = state.model_dump_json()
        with self._lock:
            self._entries[thread_id] = (payload, self._clock())
            self._entries.move_to_end(thread_id)
            while self.max_threads is not None and len(self._entries) > self.max_threads:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("Evicted checkpoint for thread %s", evicted)

    def delete(self, thread_id: str) -> None:
        with self._lock:
            self._entries.pop(thread_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, written_at: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - written_at > self.ttl_seconds


class SqlCheckpointStore(CheckpointStore):
    """
    SQLAlchemy-backed store, one row per thread.

    A write whose version is not newer than the stored one is rejected,
    so a stale read can never overwrite a newer turn.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def get(self, thread_id: str) -> Optional[ConversationState]:
        try:
            with db_session(self.session_factory) as session:
                row = session.get(ConversationCheckpoint, thread_id)
                data = None if row is None else row.state
        except SQLAlchemyError as e:
            raise CollaboratorError("checkpoint", f"read failed: {e}") from e

        if data is None:
            return None
        return _load_state(thread_id, data)

    def put(self, thread_id: str, state: ConversationState) -> None:
        payload = state.model_dump(mode="json")
        try:
            with db_session(self.session_factory) as session:
                row = session.get(ConversationCheckpoint, thread_id, with_for_update=True)
                if row is None:
                    session.add(
                        ConversationCheckpoint(
                            thread_id=thread_id,
                            state=payload,
                            version=state.version,
                        )
                    )
                    return
                if state.version <= row.version:
                    raise CollaboratorError(
                        "checkpoint",
                        f"stale write for thread {thread_id!r}: "
                        f"version {state.version} <= stored {row.version}",
                    )
                row.state = payload
                row.version = state.version
        except SQLAlchemyError as e:
            raise CollaboratorError("checkpoint", f"write failed: {e}") from e

    def delete(self, thread_id: str) -> None:
        try:
            with db_session(self.session_factory) as session:
                session.execute(
                    delete(ConversationCheckpoint).where(
                        ConversationCheckpoint.thread_id == thread_id
                    )
                )
        except SQLAlchemyError as e:
            raise CollaboratorError("checkpoint", f"delete failed: {e}") from e

    def purge_expired(self, ttl_seconds: float) -> int:
        """
        Delete checkpoints not written for `ttl_seconds`. Returns the row count.

        The service never calls this. It is a hook for whatever job runner
        the deployment uses (cron, a worker), since SQL rows do not expire
        by themselves.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=ttl_seconds)
        try:
            with db_session(self.session_factory) as session:
                result = session.execute(
                    delete(ConversationCheckpoint).where(
                        ConversationCheckpoint.updated_at < cutoff
                    )
                )
                count = result.rowcount or 0
        except SQLAlchemyError as e:
            raise CollaboratorError("checkpoint", f"purge failed: {e}") from e

        logger.info("Purged %d expired checkpoints", count)
        return count


def build_checkpoint_store(settings) -> CheckpointStore:
    if settings.checkpoint_backend == "sql":
        return SqlCheckpointStore()
    if settings.checkpoint_backend == "memory":
        return InMemoryCheckpointStore(
            ttl_seconds=settings.checkpoint_ttl_seconds,
            max_threads=settings.checkpoint_max_threads,
        )
    raise ValueError(f"Unknown checkpoint backend: {settings.checkpoint_backend!r}")
