"""Storage backends for the Connected Notes core."""

from connected_notes.storage.base import StorageBackend
from connected_notes.storage.markdown_backend import MarkdownBackend
from connected_notes.storage.memory_backend import MemoryBackend

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "MarkdownBackend",
]
