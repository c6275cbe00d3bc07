"""In-memory storage backend for tests and offline use."""
import copy
import logging
from typing import Dict, Optional, Sequence

from connected_notes.exceptions import (
    ErrorCode,
    FlashcardNotFoundError,
    NoteNotFoundError,
    StorageError,
)
from connected_notes.models.schema import (
    JSON_MIMETYPE,
    TEXT_MIMETYPE,
    Flashcard,
    Note,
    NoteMetadata,
    ParentTagToChildTags,
    UserSettings,
    epoch_millis,
    generate_id,
)
from connected_notes.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class MemoryBackend(StorageBackend):
    """Keeps everything in dictionaries.

    Stored objects are copies, so edits made by the core to its live notes
    only reach this backend through the save methods. Saves never republish
    on their own, whatever ``notify`` says; call ``refresh`` to simulate a
    change arriving from elsewhere.
    """

    def __init__(
        self,
        notes: Optional[Sequence[Note]] = None,
        flashcards: Optional[Sequence[Flashcard]] = None,
        nested_tag_groups: Optional[ParentTagToChildTags] = None,
        settings: Optional[UserSettings] = None,
    ):
        super().__init__()
        self._notes: Dict[str, Note] = {n.id: n.model_copy(deep=True) for n in notes or []}
        self._flashcards: Dict[str, Flashcard] = {
            f.id: f.model_copy(deep=True) for f in flashcards or []
        }
        self._nested_tag_groups: ParentTagToChildTags = copy.deepcopy(nested_tag_groups or {})
        self._settings = (settings or UserSettings()).model_copy(deep=True)

    async def initialize(self) -> None:
        logger.debug(
            f"Memory backend starting with {len(self._notes)} notes and "
            f"{len(self._flashcards)} flashcards"
        )
        self._publish()

    async def refresh(self) -> None:
        self._publish()

    def _publish(self) -> None:
        self.notes.next([n.model_copy(deep=True) for n in self._notes.values()])
        self.flashcards.next([f.model_copy(deep=True) for f in self._flashcards.values()])
        self.nested_tag_groups.next(copy.deepcopy(self._nested_tag_groups))
        self.stored_settings.next(self._settings.model_copy(deep=True))

    def get_stored_note(self, note_id: str) -> Optional[Note]:
        note = self._notes.get(note_id)
        return note.model_copy(deep=True) if note else None

    def get_stored_flashcard(self, flashcard_id: str) -> Optional[Flashcard]:
        flashcard = self._flashcards.get(flashcard_id)
        return flashcard.model_copy(deep=True) if flashcard else None

    @property
    def stored_nested_tag_groups(self) -> ParentTagToChildTags:
        return copy.deepcopy(self._nested_tag_groups)

    @property
    def stored_user_settings(self) -> UserSettings:
        return self._settings.model_copy(deep=True)

    async def create_note(self, title: str) -> NoteMetadata:
        note = Note(title=title)
        self._notes[note.id] = note
        return NoteMetadata(
            id=note.id,
            title=note.title,
            last_changed_epoch_millis=note.last_changed_epoch_millis,
            created_epoch_millis=note.last_changed_epoch_millis,
        )

    async def rename_file(self, file_id: str, title: str) -> None:
        note = self._notes.get(file_id)
        if note is None:
            raise NoteNotFoundError(file_id)
        note.title = title
        note.last_changed_epoch_millis = epoch_millis()

    async def delete_file(self, file_id: str) -> None:
        if self._notes.pop(file_id, None) is None and self._flashcards.pop(file_id, None) is None:
            raise NoteNotFoundError(file_id)

    async def save_content(
        self,
        file_id: str,
        content: str,
        notify: bool = True,
        mime_type: str = TEXT_MIMETYPE,
    ) -> None:
        if mime_type == JSON_MIMETYPE:
            if file_id not in self._flashcards:
                raise FlashcardNotFoundError(file_id)
            try:
                flashcard = Flashcard.model_validate_json(content)
            except ValueError as e:
                raise StorageError(
                    f"Invalid flashcard payload for {file_id}",
                    operation="save_content",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            self._flashcards[file_id] = flashcard
        else:
            note = self._notes.get(file_id)
            if note is None:
                raise NoteNotFoundError(file_id)
            note.content = content
            note.last_changed_epoch_millis = epoch_millis()

    async def save_nested_tag_groups(self, nested_tag_groups: ParentTagToChildTags) -> None:
        self._nested_tag_groups = copy.deepcopy(nested_tag_groups)

    async def save_settings(self, settings: UserSettings) -> None:
        self._settings = settings.model_copy(deep=True)

    async def create_flashcard(self, flashcard: Flashcard) -> NoteMetadata:
        stored = flashcard.model_copy(deep=True)
        stored.id = generate_id()
        self._flashcards[stored.id] = stored
        return NoteMetadata(
            id=stored.id,
            title=stored.id,
            last_changed_epoch_millis=stored.last_changed_epoch_millis,
            created_epoch_millis=stored.created_epoch_millis,
            mime_type=JSON_MIMETYPE,
        )
