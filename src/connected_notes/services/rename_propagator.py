"""Renaming notes and rewriting the references that point at them."""
import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

from connected_notes.models.schema import RenameResult
from connected_notes.observability import traced
from connected_notes.services.reference_parser import make_reference

if TYPE_CHECKING:
    from connected_notes.services.note_service import NoteService

logger = logging.getLogger(__name__)


def rewrite_references(content: str, old_title: str, new_title: str) -> Tuple[str, int]:
    """Replace every literal ``[[old_title]]`` with ``[[new_title]]``.

    Returns:
        The rewritten content and the number of occurrences replaced.
    """
    parts = content.split(make_reference(old_title))
    return make_reference(new_title).join(parts), len(parts) - 1


class RenamePropagator:
    """Renames a note and propagates the new title to its backreferences.

    Precondition: ``new_title`` is not already used by another note. The
    form layer validates that; this class does not check it.
    """

    def __init__(self, notes: "NoteService"):
        self._notes = notes

    @traced("rename_note")
    async def rename_note(self, note_id: str, new_title: str) -> Optional[RenameResult]:
        """Rename ``note_id`` to ``new_title``.

        The reference graph is taken before the title changes. Local state
        (title, rewritten contents, index) is fully updated before the first
        await. The title rename is persisted first; content saves are then
        dispatched concurrently and exposed as ``RenameResult.completion``.

        Args:
            note_id: Note to rename.
            new_title: Title to apply.

        Returns:
            Counts of rewritten notes and references, or None if the note
            does not exist.
        """
        service = self._notes
        note = service.get_note(note_id)
        if note is None:
            logger.warning(f"Cannot rename unknown note {note_id}")
            return None

        prev_title = note.title
        graph = service.get_graph_representation()
        backref_ids = {node.note_id for node in graph if prev_title in node.connected_to}

        note.title = new_title
        rewrites: List[Tuple[str, str]] = []
        renamed_back_ref_count = 0
        for referencing_note in service.graph.notes:
            if referencing_note.id not in backref_ids:
                continue
            new_content, count = rewrite_references(
                referencing_note.content, prev_title, new_title
            )
            renamed_back_ref_count += count
            service.apply_local_content(referencing_note, new_content)
            rewrites.append((referencing_note.id, new_content))
        service.publish_notes()

        logger.info(
            f"Renaming '{prev_title}' to '{new_title}': {renamed_back_ref_count} "
            f"references in {len(rewrites)} notes"
        )

        await service.persist_rename(note_id, new_title)

        saves = [
            asyncio.ensure_future(service.persist_content(ref_id, content, notify=False))
            for ref_id, content in rewrites
        ]
        return RenameResult(
            renamed_note_count=len(rewrites),
            renamed_back_ref_count=renamed_back_ref_count,
            completion=asyncio.gather(*saves),
        )
