"""
residentml template state.

Per-instance variable store, value coercion, key/value persistence and the
action executor that mutates the store from template events.
"""

from residentml.core.state.executor import ActionExecutor, Toast
from residentml.core.state.storage import (
    KeyValueStorage,
    MemoryStorage,
    SqliteStorage,
    open_storage,
)
from residentml.core.state.store import MAX_PERSIST_BYTES, MAX_UPDATE_DEPTH, VariableStore

__all__ = [
    "MAX_PERSIST_BYTES",
    "MAX_UPDATE_DEPTH",
    "ActionExecutor",
    "KeyValueStorage",
    "MemoryStorage",
    "SqliteStorage",
    "Toast",
    "VariableStore",
    "open_storage",
]
