"""Title/ID lookup tables and the reference graph for the current note set."""
import logging
from typing import Dict, List, Optional, Sequence, Set

from connected_notes.models.schema import Note, NoteAndLinks
from connected_notes.services.reference_parser import referenced_titles

logger = logging.getLogger(__name__)


class NoteGraphIndex:
    """Lookup tables over the active note set.

    The three maps are rebuilt from scratch on every ``rebuild`` and swapped
    in together, so a reader never sees a half-updated index. Notes are
    held by reference: local edits mutate them in place and must be
    followed by ``rebuild`` before title lookups are trusted again.
    """

    def __init__(self, notes: Optional[Sequence[Note]] = None):
        self._notes: List[Note] = []
        self._id_to_note: Dict[str, Note] = {}
        self._title_to_note: Dict[str, Note] = {}
        self._title_to_note_case_insensitive: Dict[str, Note] = {}
        if notes is not None:
            self.rebuild(notes)

    def rebuild(self, notes: Sequence[Note]) -> None:
        """Replace the index with ``notes``.

        With duplicate titles the later note wins the title lookups.
        """
        id_to_note: Dict[str, Note] = {}
        title_to_note: Dict[str, Note] = {}
        title_to_note_ci: Dict[str, Note] = {}
        for note in notes:
            id_to_note[note.id] = note
            title_to_note[note.title] = note
            title_to_note_ci[note.title.casefold()] = note

        self._notes = list(notes)
        self._id_to_note = id_to_note
        self._title_to_note = title_to_note
        self._title_to_note_case_insensitive = title_to_note_ci
        logger.debug(f"Rebuilt note index with {len(self._notes)} notes")

    @property
    def notes(self) -> List[Note]:
        return list(self._notes)

    @property
    def titles(self) -> Set[str]:
        return set(self._title_to_note)

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._id_to_note

    def get_note(self, note_id: str) -> Optional[Note]:
        return self._id_to_note.get(note_id)

    def get_note_for_title(self, title: str) -> Optional[Note]:
        return self._title_to_note.get(title)

    def get_note_for_title_case_insensitive(self, title: str) -> Optional[Note]:
        """Look up a note ignoring case, e.g. to reject duplicate titles."""
        return self._title_to_note_case_insensitive.get(title.casefold())

    def get_graph_representation(self) -> List[NoteAndLinks]:
        """Every note with the titles it references.

        A title referenced twice in one note appears twice in
        ``connected_to``.
        """
        existing_titles = self.titles
        return [
            NoteAndLinks(
                note_id=note.id,
                note_title=note.title,
                connected_to=referenced_titles(note.content, existing_titles),
                last_changed=note.last_changed_epoch_millis,
            )
            for note in self._notes
        ]

    def get_backreferences(self, note_id: str) -> List[Note]:
        """Notes whose content references the title of ``note_id``.

        Returns an empty list for unknown IDs.
        """
        note = self._id_to_note.get(note_id)
        if note is None:
            logger.debug(f"Backreferences requested for unknown note {note_id}")
            return []
        backref_ids = {
            node.note_id
            for node in self.get_graph_representation()
            if note.title in node.connected_to
        }
        return [n for n in self._notes if n.id in backref_ids]
