"""Storage components for the relay."""

from pinrelay.store.state_store import StateStore, FileStateStore, InMemoryStateStore

__all__ = [
    "StateStore",
    "FileStateStore",
    "InMemoryStateStore",
]
