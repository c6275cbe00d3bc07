"""Bracketed note reference parsing.

A reference is ``[[Title]]`` where ``Title`` is the exact title of an
existing note. There is no escaping: this is authoring syntax, not the
markdown link syntax handled at import time.
"""
import logging
from typing import Collection, List, Optional

from connected_notes.models.schema import Reference

logger = logging.getLogger(__name__)

OPEN_DELIMITER = "[["
CLOSE_DELIMITER = "]]"


def extract_references(
    content: str,
    known_titles: Collection[str],
    source_note_id: Optional[str] = None,
) -> List[Reference]:
    """Extract resolved references from a note body, in order of appearance.

    Runs of three or more ``[`` are treated as if only the last two were
    there, so ``[[[[title]]`` behaves like ``[[title]]``. An opener with no
    closing ``]]`` ends the scan; anything after it is not searched.

    Args:
        content: Note body.
        known_titles: Titles that currently exist (exact, case-sensitive).
        source_note_id: Recorded on each returned reference.

    Returns:
        References whose title is in ``known_titles``. Repeated references
        to the same title are all returned.
    """
    references: List[Reference] = []
    idx = content.find(OPEN_DELIMITER)
    while idx != -1:
        while idx + 2 < len(content) and content[idx + 2] == "[":
            idx += 1
        start = idx + len(OPEN_DELIMITER)
        end = content.find(CLOSE_DELIMITER, start)
        if end == -1:
            break
        title = content[start:end]
        if title in known_titles:
            references.append(
                Reference(title=title, offset=start, source_note_id=source_note_id)
            )
        idx = content.find(OPEN_DELIMITER, end + len(CLOSE_DELIMITER))
    return references


def referenced_titles(content: str, known_titles: Collection[str]) -> List[str]:
    """Titles referenced by ``content``, with repetitions."""
    return [ref.title for ref in extract_references(content, known_titles)]


def make_reference(title: str) -> str:
    """Render ``title`` as a reference token."""
    return f"{OPEN_DELIMITER}{title}{CLOSE_DELIMITER}"
