"""Service layer tying the note graph, tag hierarchy and storage together."""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from connected_notes.config import NotesConfig
from connected_notes.config import config as default_config
from connected_notes.exceptions import ConnectedNotesError
from connected_notes.models.schema import (
    JSON_MIMETYPE,
    TEXT_MIMETYPE,
    Flashcard,
    Note,
    NoteAndLinks,
    ParentTagToChildTags,
    RenameResult,
    SortDirection,
    TagGroup,
    UserSettings,
    epoch_millis,
)
from connected_notes.notifications import NotificationService
from connected_notes.observability import traced
from connected_notes.reactive import Signal, Subscription, combine_latest
from connected_notes.services import tag_extractor, tag_hierarchy
from connected_notes.services.note_graph import NoteGraphIndex
from connected_notes.services.rename_propagator import RenamePropagator
from connected_notes.services.tag_hierarchy import TagHierarchyIndex
from connected_notes.storage.base import StorageBackend

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Changes could not be saved. They are kept locally; try again later."
SETTINGS_FAILED_MESSAGE = "Failed to update settings. Try saving again."


class NoteService:
    """Owns the live note set and everything derived from it.

    All edits are applied locally first and published before the backend is
    awaited, so readers never see stale state. A failed backend call leaves
    the local edit in place and is reported through ``notifications``.

    Signals:
        notes: Live notes, re-emitted after every local or remote change.
        flashcards: Live flashcards.
        nested_tag_groups: The explicit tag hierarchy.
        stored_settings: Current user settings.
        tag_groups: Derived tag groups (see ``TagHierarchyIndex``).
    """

    def __init__(
        self,
        backend: StorageBackend,
        notifications: Optional[NotificationService] = None,
        config: Optional[NotesConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.backend = backend
        self.notifications = notifications or NotificationService()
        self.config = config or default_config
        self.clock = clock or epoch_millis

        self.graph = NoteGraphIndex()
        self.tag_index = TagHierarchyIndex(mode=self.config.tag_recency_mode)
        self.renamer = RenamePropagator(self)

        self.notes: Signal[List[Note]] = Signal(name="notes")
        self.flashcards: Signal[List[Flashcard]] = Signal(name="flashcards")
        self.nested_tag_groups: Signal[ParentTagToChildTags] = Signal(name="nested_tag_groups")
        self.stored_settings: Signal[UserSettings] = Signal(name="stored_settings")

        self.backend_available = False
        self._subscriptions: List[Subscription] = []
        self._note_waiters: Dict[str, List[asyncio.Future]] = {}

    @property
    def tag_groups(self) -> Signal[List[TagGroup]]:
        return self.tag_index.tag_groups

    async def initialize(self) -> bool:
        """Wire the derived indexes to the signals and start the backend.

        Returns:
            Whether the backend started. On failure the service still works
            on whatever state is pushed to it locally.
        """
        self._subscriptions.append(self.notes.subscribe(self._on_notes))
        self._subscriptions.append(
            combine_latest(
                [self.notes, self.stored_settings, self.nested_tag_groups],
                self._on_tag_inputs,
            )
        )
        self._subscriptions.extend(
            [
                self.backend.notes.subscribe(lambda notes: self.notes.next(list(notes))),
                self.backend.flashcards.subscribe(
                    lambda flashcards: self.flashcards.next(list(flashcards))
                ),
                self.backend.nested_tag_groups.subscribe(self.nested_tag_groups.next),
                self.backend.stored_settings.subscribe(self.stored_settings.next),
            ]
        )

        try:
            await self.backend.initialize()
        except ConnectedNotesError as e:
            logger.error(f"Storage backend failed to start: {e}")
            self.notifications.show_blocking_message(
                "Storage is not available. Changes will not be saved."
            )
            return False
        self.backend_available = True
        logger.info(f"Note service ready with {len(self.graph)} notes")
        return True

    def close(self) -> None:
        """Unsubscribe from everything and cancel pending ``wait_for_note`` calls."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        for waiters in self._note_waiters.values():
            for future in waiters:
                future.cancel()
        self._note_waiters.clear()

    def _on_notes(self, notes: List[Note]) -> None:
        self.graph.rebuild(notes)
        for note_id in list(self._note_waiters):
            note = self.graph.get_note(note_id)
            if note is None:
                continue
            for future in self._note_waiters.pop(note_id):
                if not future.done():
                    future.set_result(note)

    def _on_tag_inputs(
        self, values: Tuple[List[Note], UserSettings, ParentTagToChildTags]
    ) -> None:
        notes, settings, hierarchy = values
        self.tag_index.rebuild(notes, settings.ignored_tags, hierarchy)

    # ------------------------------------------------------------------
    # Local state helpers, shared with RenamePropagator
    # ------------------------------------------------------------------

    def publish_notes(self) -> None:
        """Re-emit the live notes so every derived index is rebuilt."""
        self.notes.next(list(self.notes.value or []))

    def apply_local_content(self, note: Note, content: str) -> None:
        note.content = content
        note.last_changed_epoch_millis = self.clock()

    def _report_failure(self, file_id: str, error: Exception, operation: str) -> None:
        logger.warning(f"{operation} failed for {file_id}: {error}")
        self.notifications.to_sidebar(
            f"save-failed-{file_id}",
            SAVE_FAILED_MESSAGE,
            remove_after_millis=self.config.save_failure_notification_millis,
        )

    async def persist_content(
        self,
        file_id: str,
        content: str,
        notify: bool = True,
        mime_type: str = TEXT_MIMETYPE,
    ) -> bool:
        """Send content to the backend, tracking it as unsaved until it lands."""
        self.notifications.unsaved_changed(file_id)
        try:
            await self.backend.save_content(file_id, content, notify, mime_type)
        except Exception as e:
            self._report_failure(file_id, e, "save_content")
            return False
        self.notifications.note_saved(file_id)
        return True

    async def persist_rename(self, note_id: str, title: str) -> bool:
        try:
            await self.backend.rename_file(note_id, title)
        except Exception as e:
            self._report_failure(note_id, e, "rename_file")
            return False
        return True

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_note(self, note_id: str) -> Optional[Note]:
        return self.graph.get_note(note_id)

    def get_note_for_title_case_insensitive(self, title: str) -> Optional[Note]:
        return self.graph.get_note_for_title_case_insensitive(title)

    def get_graph_representation(self) -> List[NoteAndLinks]:
        return self.graph.get_graph_representation()

    def get_backreferences(self, note_id: str) -> List[Note]:
        return self.graph.get_backreferences(note_id)

    async def wait_for_note(self, note_id: str, timeout: Optional[float] = None) -> Note:
        """Return the note, waiting until it appears in the live set.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        note = self.get_note(note_id)
        if note is not None:
            return note
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._note_waiters.setdefault(note_id, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            waiters = self._note_waiters.get(note_id, [])
            if future in waiters:
                waiters.remove(future)
                if not waiters:
                    del self._note_waiters[note_id]

    @traced("create_note")
    async def create_note(self, title: str) -> Optional[str]:
        """Create an empty note.

        Returns:
            The new note ID, or None if the backend failed.
        """
        try:
            metadata = await self.backend.create_note(title)
        except Exception as e:
            logger.warning(f"Failed to create note '{title}': {e}")
            self.notifications.show_blocking_message(f"Note '{title}' could not be created.")
            return None

        if metadata.id not in self.graph:
            note = Note(
                id=metadata.id,
                title=metadata.title,
                content="",
                last_changed_epoch_millis=metadata.last_changed_epoch_millis,
            )
            self.notes.next(list(self.notes.value or []) + [note])
        logger.info(f"Created note {metadata.id}")
        return metadata.id

    @traced("delete_note")
    async def delete_note(self, note_id: str) -> bool:
        """Remove a note locally, then from the backend.

        Returns:
            False if the note is unknown or the backend delete failed.
        """
        if note_id not in self.graph:
            logger.debug(f"Delete requested for unknown note {note_id}")
            return False
        self.notes.next([n for n in self.notes.value or [] if n.id != note_id])
        try:
            await self.backend.delete_file(note_id)
        except Exception as e:
            self._report_failure(note_id, e, "delete_file")
            return False
        return True

    @traced("save_content")
    async def save_content(self, note_id: str, content: str, notify: bool = True) -> bool:
        """Apply new content locally, then persist it.

        Args:
            note_id: Note to update. Unknown IDs are ignored.
            content: New markdown body.
            notify: Re-emit ``notes`` so tag groups are recomputed.

        Returns:
            Whether the backend accepted the change.
        """
        note = self.get_note(note_id)
        if note is None:
            logger.debug(f"Save requested for unknown note {note_id}")
            return False
        self.apply_local_content(note, content)
        if notify:
            self.publish_notes()
        return await self.persist_content(note_id, content, notify)

    async def rename_note(self, note_id: str, new_title: str) -> Optional[RenameResult]:
        return await self.renamer.rename_note(note_id, new_title)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def replace_tag(self, note_id: str, old_tag: str, new_tag: str) -> bool:
        """Swap one tag in a note body for another and save the note."""
        note = self.get_note(note_id)
        if note is None:
            return False
        new_content = tag_extractor.replace_tag(note.content, old_tag, new_tag)
        if new_content == note.content:
            return True
        return await self.save_content(note_id, new_content)

    def get_tag_group_for_tag(self, tag: str) -> Optional[TagGroup]:
        return self.tag_index.get_tag_group_for_tag(tag)

    def get_root_tags(self) -> List[str]:
        return self.tag_index.root_tags()

    def get_child_tags(self, tag: str) -> List[str]:
        return self.tag_index.get_child_tags(tag)

    def sort_tags(self, tags: Sequence[str], direction: SortDirection) -> List[str]:
        return tag_hierarchy.sort_tags(tags, direction, self.get_tag_group_for_tag)

    def sort_notes(self, note_ids: Sequence[str], direction: SortDirection) -> List[str]:
        return tag_hierarchy.sort_notes(note_ids, direction, self.get_note)

    async def change_parent_tag(
        self, old_parent_tag: Optional[str], new_parent_tag: str, child_tag: str
    ) -> ParentTagToChildTags:
        updated = tag_hierarchy.change_parent_tag(
            self.nested_tag_groups.value or {}, old_parent_tag, new_parent_tag, child_tag
        )
        return await self._save_nested_tag_groups(updated)

    async def update_parent_tags(
        self, child_tag: str, parent_tags: Sequence[str]
    ) -> ParentTagToChildTags:
        updated = tag_hierarchy.update_parent_tags(
            self.nested_tag_groups.value or {}, child_tag, parent_tags
        )
        return await self._save_nested_tag_groups(updated)

    async def _save_nested_tag_groups(
        self, nested_tag_groups: ParentTagToChildTags
    ) -> ParentTagToChildTags:
        self.nested_tag_groups.next(nested_tag_groups)
        try:
            await self.backend.save_nested_tag_groups(nested_tag_groups)
        except Exception as e:
            self._report_failure("nested-tag-groups", e, "save_nested_tag_groups")
        return nested_tag_groups

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def update_settings(self, key: str, value: Any) -> UserSettings:
        """Set one settings field locally and persist all settings."""
        current = self.stored_settings.value or UserSettings()
        settings = UserSettings.model_validate({**current.model_dump(), key: value})
        self.stored_settings.next(settings)
        try:
            await self.backend.save_settings(settings)
        except Exception as e:
            logger.warning(f"Failed to save settings: {e}")
            self.notifications.show_blocking_message(SETTINGS_FAILED_MESSAGE)
        return settings

    async def add_ignored_tag(self, tag: str) -> UserSettings:
        current = self.stored_settings.value or UserSettings()
        if tag in current.ignored_tags:
            return current
        return await self.update_settings("ignored_tags", current.ignored_tags + [tag])

    async def remove_ignored_tag(self, tag: str) -> UserSettings:
        current = self.stored_settings.value or UserSettings()
        if tag not in current.ignored_tags:
            return current
        return await self.update_settings(
            "ignored_tags", [t for t in current.ignored_tags if t != tag]
        )

    def is_tag_ignored(self, tag: str) -> bool:
        settings = self.stored_settings.value
        return settings is not None and tag in settings.ignored_tags

    # ------------------------------------------------------------------
    # Flashcards
    # ------------------------------------------------------------------

    def get_flashcard(self, flashcard_id: str) -> Optional[Flashcard]:
        for flashcard in self.flashcards.value or []:
            if flashcard.id == flashcard_id:
                return flashcard
        return None

    @traced("create_flashcard")
    async def create_flashcard(
        self,
        side1: str,
        side2: str,
        tags: Optional[List[str]] = None,
        is_two_way: bool = True,
    ) -> Optional[Flashcard]:
        now = self.clock()
        flashcard = Flashcard(
            created_epoch_millis=now,
            last_changed_epoch_millis=now,
            tags=list(tags or []),
            side1=side1,
            side2=side2,
            is_two_way=is_two_way,
        )
        try:
            metadata = await self.backend.create_flashcard(flashcard)
        except Exception as e:
            logger.warning(f"Failed to create flashcard: {e}")
            self.notifications.show_blocking_message("Flashcard could not be created.")
            return None
        flashcard.id = metadata.id
        if self.get_flashcard(flashcard.id) is None:
            self.flashcards.next(list(self.flashcards.value or []) + [flashcard])
        return flashcard

    async def save_flashcard(self, flashcard: Flashcard) -> bool:
        """Replace the live copy of ``flashcard`` and persist it as JSON."""
        flashcard.last_changed_epoch_millis = self.clock()
        current = list(self.flashcards.value or [])
        for index, existing in enumerate(current):
            if existing.id == flashcard.id:
                current[index] = flashcard
                break
        else:
            current.append(flashcard)
        self.flashcards.next(current)
        return await self.persist_content(
            flashcard.id, flashcard.model_dump_json(), notify=False, mime_type=JSON_MIMETYPE
        )

    @traced("delete_flashcard")
    async def delete_flashcard(self, flashcard_id: str) -> bool:
        if self.get_flashcard(flashcard_id) is None:
            return False
        self.flashcards.next(
            [f for f in self.flashcards.value or [] if f.id != flashcard_id]
        )
        try:
            await self.backend.delete_file(flashcard_id)
        except Exception as e:
            self._report_failure(flashcard_id, e, "delete_file")
            return False
        return True
