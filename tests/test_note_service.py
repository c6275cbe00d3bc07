"""End-to-end tests for the note service over the in-memory backend."""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from connected_notes.exceptions import StorageError
from connected_notes.models.schema import (
    ALL_NOTES_TAG_NAME,
    UNTAGGED_NOTES_TAG_NAME,
    Flashcard,
    Note,
    SortDirection,
)
from connected_notes.notifications import NotificationService
from connected_notes.services.note_service import SAVE_FAILED_MESSAGE, NoteService
from connected_notes.storage.memory_backend import MemoryBackend


def _groups(service):
    return {g.tag: g for g in service.tag_groups.value}


class TestInitialization:
    @pytest.mark.anyio
    async def test_initial_state(self, note_service):
        assert note_service.backend_available
        assert len(note_service.graph) == 3
        groups = _groups(note_service)
        assert groups["#a"].note_ids == ["n1"]
        assert groups["#a"].newest_note_change_timestamp == 200
        assert groups[UNTAGGED_NOTES_TAG_NAME].note_ids == ["n3"]
        assert note_service.get_root_tags() == ["#a", ALL_NOTES_TAG_NAME, UNTAGGED_NOTES_TAG_NAME]
        assert note_service.get_child_tags("#a") == ["#b"]

    @pytest.mark.anyio
    async def test_backend_failure_is_reported(self, test_config):
        backend = MemoryBackend()
        notifications = NotificationService()
        service = NoteService(backend, notifications, test_config)
        with patch.object(backend, "initialize", AsyncMock(side_effect=StorageError("offline"))):
            assert await service.initialize() is False
        assert not service.backend_available
        assert notifications.sidebar.value
        service.close()

    @pytest.mark.anyio
    async def test_two_note_scenario(self, test_config):
        backend = MemoryBackend(
            notes=[
                Note(id="1", title="X", content="#t [[Y]]"),
                Note(id="2", title="Y", content=""),
            ]
        )
        service = NoteService(backend, NotificationService(), test_config)
        assert await service.initialize()

        groups = _groups(service)
        assert groups["#t"].note_ids == ["1"]
        assert groups[ALL_NOTES_TAG_NAME].note_ids == ["1", "2"]
        assert [n.title for n in service.get_backreferences("2")] == ["X"]
        service.close()

    @pytest.mark.anyio
    async def test_remote_refresh_replaces_live_notes(self, note_service, memory_backend):
        await memory_backend.create_note("Remote")
        await memory_backend.refresh()
        assert note_service.get_note_for_title_case_insensitive("remote") is not None


class TestSaveContent:
    @pytest.mark.anyio
    async def test_local_update_then_persist(self, note_service, memory_backend, notifications, clock):
        clock.advance(1000)
        assert await note_service.save_content("n3", "#c [[X]]")
        note = note_service.get_note("n3")
        assert note.content == "#c [[X]]"
        assert note.last_changed_epoch_millis == clock.now
        assert "#c" in _groups(note_service)
        assert [n.id for n in note_service.get_backreferences("n1")] == ["n3"]
        assert memory_backend.get_stored_note("n3").content == "#c [[X]]"
        assert notifications.unsaved.value == []

    @pytest.mark.anyio
    async def test_local_state_visible_before_backend_returns(self, note_service, memory_backend):
        gate = asyncio.Event()

        async def slow_save(*args):
            await gate.wait()

        with patch.object(memory_backend, "save_content", side_effect=slow_save):
            task = asyncio.ensure_future(note_service.save_content("n2", "changed"))
            await asyncio.sleep(0)
            assert note_service.get_note("n2").content == "changed"
            gate.set()
            assert await task

    @pytest.mark.anyio
    async def test_failed_save_notifies_and_keeps_edit(self, note_service, memory_backend, notifications):
        failing = AsyncMock(side_effect=StorageError("disk full"))
        with patch.object(memory_backend, "save_content", failing):
            assert await note_service.save_content("n2", "offline edit") is False

        assert note_service.get_note("n2").content == "offline edit"
        assert notifications.unsaved.value == ["n2"]
        assert notifications.sidebar.value[-1].message == SAVE_FAILED_MESSAGE

        assert await note_service.save_content("n2", "offline edit, retried")
        assert notifications.unsaved.value == []

    @pytest.mark.anyio
    async def test_unknown_note_is_ignored(self, note_service):
        assert await note_service.save_content("missing", "x") is False


class TestNoteLifecycle:
    @pytest.mark.anyio
    async def test_create_and_delete(self, note_service, memory_backend):
        note_id = await note_service.create_note("New")
        assert note_service.get_note(note_id).title == "New"
        assert len([n for n in note_service.notes.value if n.id == note_id]) == 1
        assert note_id in _groups(note_service)[UNTAGGED_NOTES_TAG_NAME].note_ids

        assert await note_service.delete_note(note_id)
        assert note_service.get_note(note_id) is None
        assert memory_backend.get_stored_note(note_id) is None
        assert await note_service.delete_note(note_id) is False

    @pytest.mark.anyio
    async def test_create_failure_returns_none(self, note_service, memory_backend, notifications):
        with patch.object(memory_backend, "create_note", AsyncMock(side_effect=StorageError("nope"))):
            assert await note_service.create_note("New") is None
        assert notifications.sidebar.value

    @pytest.mark.anyio
    async def test_wait_for_note(self, note_service):
        waiter = asyncio.ensure_future(note_service.wait_for_note("later", timeout=1))
        await asyncio.sleep(0)
        note_service.notes.next(note_service.notes.value + [Note(id="later", title="Later")])
        note = await waiter
        assert note.title == "Later"

    @pytest.mark.anyio
    async def test_wait_for_note_timeout(self, note_service):
        with pytest.raises(asyncio.TimeoutError):
            await note_service.wait_for_note("never", timeout=0.01)
        assert note_service._note_waiters == {}


class TestTags:
    @pytest.mark.anyio
    async def test_replace_tag(self, note_service):
        assert await note_service.replace_tag("n1", "#a", "#z")
        assert note_service.get_note("n1").content == "#z\nsee [[Y]]"
        assert "#a" not in _groups(note_service)

    @pytest.mark.anyio
    async def test_change_parent_tag_persists(self, note_service, memory_backend):
        await note_service.change_parent_tag("#a", "#z", "#b")
        assert note_service.get_child_tags("#z") == ["#b"]
        assert note_service.get_child_tags("#a") == []
        assert memory_backend.stored_nested_tag_groups == {"#a": [], "#z": ["#b"]}
        assert "#b" not in note_service.get_root_tags()

    @pytest.mark.anyio
    async def test_update_parent_tags_to_root(self, note_service):
        await note_service.update_parent_tags("#b", [])
        assert "#b" in note_service.get_root_tags()

    @pytest.mark.anyio
    async def test_ignored_tags(self, note_service, memory_backend):
        await note_service.add_ignored_tag("#a")
        assert note_service.is_tag_ignored("#a")
        assert "#a" not in _groups(note_service)
        assert "n1" in _groups(note_service)[UNTAGGED_NOTES_TAG_NAME].note_ids
        assert memory_backend.stored_user_settings.ignored_tags == ["#a"]

        await note_service.remove_ignored_tag("#a")
        assert not note_service.is_tag_ignored("#a")
        assert "#a" in _groups(note_service)

    @pytest.mark.anyio
    async def test_settings_failure_shows_popup(self, note_service, memory_backend, notifications):
        with patch.object(memory_backend, "save_settings", AsyncMock(side_effect=StorageError("x"))):
            settings = await note_service.update_settings("ignored_tags", ["#q"])
        assert settings.ignored_tags == ["#q"]
        assert notifications.sidebar.value[-1].message.startswith("Failed to update settings")

    @pytest.mark.anyio
    async def test_sorting_helpers(self, note_service):
        assert note_service.sort_notes(["n1", "n2", "n3"], SortDirection.MODIFIED_OLDEST_FIRST) == [
            "n1",
            "n2",
            "n3",
        ]
        assert note_service.sort_tags(["#b", "#a"], SortDirection.ALPHABETICAL) == ["#a", "#b"]


class TestFlashcards:
    @pytest.mark.anyio
    async def test_create_save_delete(self, note_service, memory_backend, clock):
        flashcard = await note_service.create_flashcard("front", "back", tags=["#a"])
        assert flashcard is not None
        assert note_service.get_flashcard(flashcard.id) is flashcard
        assert flashcard.created_epoch_millis == clock.now

        flashcard.side2 = "new back"
        assert await note_service.save_flashcard(flashcard)
        assert memory_backend.get_stored_flashcard(flashcard.id).side2 == "new back"

        assert await note_service.delete_flashcard(flashcard.id)
        assert note_service.get_flashcard(flashcard.id) is None
        assert memory_backend.get_stored_flashcard(flashcard.id) is None

    @pytest.mark.anyio
    async def test_saving_unknown_flashcard_fails(self, note_service, memory_backend, notifications):
        flashcard = Flashcard(id="never-created", side1="q", side2="a")
        assert await note_service.save_flashcard(flashcard) is False
        assert note_service.get_flashcard("never-created") is flashcard
        assert memory_backend.get_stored_flashcard("never-created") is None
        assert notifications.unsaved.value == ["never-created"]
