"""Memory Layer - Patches, their persistence and the undo stack."""

from pagepatch.layers.memory.patches import Patch, PatchKind
from pagepatch.layers.memory.persistence import DebouncedWriter, JsonFileStorage, MemoryStorage, StorageBackend
from pagepatch.layers.memory.store import PatchStore
from pagepatch.layers.memory.undo import UndoManager

__all__ = [
    "DebouncedWriter",
    "JsonFileStorage",
    "MemoryStorage",
    "Patch",
    "PatchKind",
    "PatchStore",
    "StorageBackend",
    "UndoManager",
]
