"""Storage backend contract."""
from abc import ABC, abstractmethod
from typing import List

from connected_notes.models.schema import (
    TEXT_MIMETYPE,
    Flashcard,
    Note,
    NoteMetadata,
    ParentTagToChildTags,
    UserSettings,
)
from connected_notes.reactive import Signal


class StorageBackend(ABC):
    """Abstract persistence for notes, flashcards, the tag hierarchy and settings.

    Backends publish their current state on four signals; the core
    subscribes to them and owns the live copy from then on. Every mutating
    method is a coroutine that raises a ``ConnectedNotesError`` subclass on
    failure. The core catches those and reports them; it never reverts.
    """

    def __init__(self) -> None:
        self.notes: Signal[List[Note]] = Signal(name="backend_notes")
        self.flashcards: Signal[List[Flashcard]] = Signal(name="backend_flashcards")
        self.nested_tag_groups: Signal[ParentTagToChildTags] = Signal(
            name="backend_nested_tag_groups"
        )
        self.stored_settings: Signal[UserSettings] = Signal(name="backend_settings")

    @abstractmethod
    async def initialize(self) -> None:
        """Load stored state and publish it on the signals."""
        pass

    @abstractmethod
    async def refresh(self) -> None:
        """Re-read stored state and publish it again."""
        pass

    @abstractmethod
    async def create_note(self, title: str) -> NoteMetadata:
        """Create an empty note and return its metadata."""
        pass

    @abstractmethod
    async def rename_file(self, file_id: str, title: str) -> None:
        """Change the stored title of a note."""
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        """Delete a note or flashcard."""
        pass

    @abstractmethod
    async def save_content(
        self,
        file_id: str,
        content: str,
        notify: bool = True,
        mime_type: str = TEXT_MIMETYPE,
    ) -> None:
        """Store new content for a note, or a serialized flashcard.

        Args:
            file_id: Note or flashcard ID.
            content: Markdown body, or JSON when ``mime_type`` is JSON.
            notify: Whether the backend should republish its state afterwards.
            mime_type: Content type of ``content``.
        """
        pass

    @abstractmethod
    async def save_nested_tag_groups(self, nested_tag_groups: ParentTagToChildTags) -> None:
        pass

    @abstractmethod
    async def save_settings(self, settings: UserSettings) -> None:
        pass

    @abstractmethod
    async def create_flashcard(self, flashcard: Flashcard) -> NoteMetadata:
        """Store a new flashcard and return the metadata of its file."""
        pass
