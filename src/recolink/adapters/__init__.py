"""Reference implementations of the ports in ``recolink.ports``."""

from recolink.adapters.files import FileIngestor, FileModelStore, read_records
from recolink.adapters.memory import (
    InMemoryEventBus,
    InMemoryIngestor,
    InMemoryJobStore,
    InMemoryMatchStore,
    InMemoryModelStore,
    InMemorySearchIndex,
)

__all__ = [
    "InMemoryJobStore",
    "InMemoryMatchStore",
    "InMemorySearchIndex",
    "InMemoryModelStore",
    "InMemoryEventBus",
    "InMemoryIngestor",
    "FileIngestor",
    "FileModelStore",
    "read_records",
]
