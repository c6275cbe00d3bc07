"""Common test fixtures for the Connected Notes core."""

import tempfile
from pathlib import Path

import pytest

from connected_notes.config import NotesConfig, TagRecencyMode
from connected_notes.models.schema import Note, UserSettings
from connected_notes.notifications import NotificationService
from connected_notes.services.note_service import NoteService
from connected_notes.storage.memory_backend import MemoryBackend

DAY = 24 * 60 * 60 * 1000


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


class FakeClock:
    """Manually advanced epoch-millis clock."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> int:
        self.now += millis
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_data_dir():
    """Create a temporary data directory for the markdown backend."""
    with tempfile.TemporaryDirectory() as data_dir:
        yield Path(data_dir)


@pytest.fixture
def test_config(temp_data_dir):
    """Config with test paths and no debounce delay."""
    return NotesConfig(
        data_dir=temp_data_dir,
        flashcard_debounce_seconds=0,
        tag_recency_mode=TagRecencyMode.NEWEST,
        flashcard_initial_delay_periods=[DAY, 6 * DAY],
    )


@pytest.fixture
def sample_notes():
    """Three notes referencing each other, the way the sidebar demo data does."""
    return [
        Note(id="n1", title="X", content="#a\nsee [[Y]]", last_changed_epoch_millis=100),
        Note(id="n2", title="Y", content="#b\n", last_changed_epoch_millis=200),
        Note(id="n3", title="Z", content="[[Y]] and [[Y]]", last_changed_epoch_millis=300),
    ]


@pytest.fixture
def memory_backend(sample_notes):
    return MemoryBackend(
        notes=sample_notes,
        nested_tag_groups={"#a": ["#b"]},
        settings=UserSettings(),
    )


@pytest.fixture
def notifications():
    return NotificationService()


@pytest.fixture
async def note_service(memory_backend, notifications, test_config, clock):
    """An initialized NoteService over the sample notes."""
    service = NoteService(
        backend=memory_backend,
        notifications=notifications,
        config=test_config,
        clock=clock,
    )
    await service.initialize()
    yield service
    service.close()
