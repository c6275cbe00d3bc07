"""
Connected Notes - note graph, tag hierarchy and spaced repetition core.

This package implements the engine behind a Zettelkasten-style note taking
tool: bracketed note references and backreferences, hashtag groups arranged
into a user-editable hierarchy, and an SM-2 style flashcard scheduler.

This version uses asyncio for storage operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("connected-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
