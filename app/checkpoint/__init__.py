# app/checkpoint/__init__.py
from .locks import ThreadLocks
from .store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    SqlCheckpointStore,
    build_checkpoint_store,
)

__all__ = [
    "ThreadLocks",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SqlCheckpointStore",
    "build_checkpoint_store",
]
