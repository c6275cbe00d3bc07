"""Markdown parsing and serialization for notes.

A note file is the note body with YAML frontmatter carrying the ID, the
title and the change timestamps. The body is stored verbatim apart from
leading and trailing whitespace, which frontmatter parsing trims.
"""
import logging
from typing import Any, Dict, Optional

import frontmatter

from connected_notes.exceptions import ErrorCode, NoteValidationError
from connected_notes.models.schema import Note, epoch_millis

logger = logging.getLogger(__name__)

# Frontmatter keys owned by the parser; anything else is preserved as-is
_RESERVED_KEYS = ("id", "title", "created", "updated")


class MarkdownParser:
    """Parses and serializes notes as markdown with frontmatter."""

    def parse_note(self, content: str) -> Note:
        """Parse a note from markdown content with YAML frontmatter.

        Args:
            content: Raw markdown string with ``---`` frontmatter delimiters.

        Returns:
            The parsed note.

        Raises:
            NoteValidationError: If the ID or title is missing.
        """
        post = frontmatter.loads(content)
        metadata = post.metadata

        note_id = metadata.get("id")
        if not note_id:
            raise NoteValidationError("Note ID missing from frontmatter", field="id")

        title = metadata.get("title")
        if not title:
            raise NoteValidationError(
                f"Note title missing from frontmatter of {note_id}",
                field="title",
                code=ErrorCode.NOTE_TITLE_REQUIRED,
            )

        updated = metadata.get("updated")
        try:
            last_changed = int(updated) if updated is not None else epoch_millis()
        except (TypeError, ValueError):
            logger.warning(f"Invalid 'updated' value {updated!r} in note {note_id}")
            last_changed = epoch_millis()

        return Note(
            id=str(note_id),
            title=str(title),
            content=post.content,
            last_changed_epoch_millis=last_changed,
        )

    def extra_metadata(self, content: str) -> Dict[str, Any]:
        """Frontmatter entries that are not part of the note model."""
        post = frontmatter.loads(content)
        return {k: v for k, v in post.metadata.items() if k not in _RESERVED_KEYS}

    def render_to_markdown(
        self,
        note: Note,
        created_epoch_millis: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Convert a note to markdown with frontmatter.

        Args:
            note: The note to serialize.
            created_epoch_millis: Creation time recorded in the frontmatter.
            extra: Additional frontmatter entries to keep.

        Returns:
            Markdown string with YAML frontmatter.
        """
        metadata: Dict[str, Any] = {
            "id": note.id,
            "title": note.title,
            "created": created_epoch_millis,
            "updated": note.last_changed_epoch_millis,
        }
        metadata.update(extra or {})
        post = frontmatter.Post(note.content, **metadata)
        return frontmatter.dumps(post)

    def created_epoch_millis(self, content: str) -> int:
        post = frontmatter.loads(content)
        created = post.metadata.get("created")
        try:
            return int(created)
        except (TypeError, ValueError):
            return epoch_millis()
