"""Session persistence: update queues, storage backends, fork bookkeeping."""

from .forks import (
    ForkCleanupResult,
    cleanup_empty_fork_branches,
    create_fork,
    delete_fork_branch,
    switch_fork,
)
from .storage import InMemorySessionStorage, SessionStorage, SqliteSessionStorage
from .store import SessionStore
from .update_queue import UpdateQueue

__all__ = [
    "ForkCleanupResult",
    "InMemorySessionStorage",
    "SessionStorage",
    "SessionStore",
    "SqliteSessionStorage",
    "UpdateQueue",
    "cleanup_empty_fork_branches",
    "create_fork",
    "delete_fork_branch",
    "switch_fork",
]
