"""Data models for the Connected Notes core."""

import datetime
import os
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Awaitable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Tag groups that are always present and derived automatically
ROOT_TAG_NAME = "(root)"
ALL_NOTES_TAG_NAME = "all"
UNTAGGED_NOTES_TAG_NAME = "untagged"
AUTOMATICALLY_GENERATED_TAG_NAMES = [ALL_NOTES_TAG_NAME, UNTAGGED_NOTES_TAG_NAME]

JSON_MIMETYPE = "application/json"
TEXT_MIMETYPE = "text/plain"

# Explicit parent tag -> ordered child tags, edited by the user
ParentTagToChildTags = Dict[str, List[str]]

MIN_EASINESS_FACTOR = 1.3
DEFAULT_EASINESS_FACTOR = 2.5


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def epoch_millis(dt_value: Optional[datetime.datetime] = None) -> int:
    """Milliseconds since the epoch for ``dt_value`` (defaults to now)."""
    return int((dt_value or utc_now()).timestamp() * 1000)


_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a timestamp-based ID that sorts by creation time.

    Returns:
        A string in format "YYYYMMDDTHHMMSSsssssscccccc" where the trailing
        six digits are a counter seeded from the PID, bumped when two IDs
        are requested within the same microsecond.
    """
    global _last_timestamp, _counter

    now = utc_now()
    current_timestamp = int(now.timestamp() * 1_000_000)
    if current_timestamp == _last_timestamp:
        _counter = (_counter + 1) % 1_000_000
    else:
        _last_timestamp = current_timestamp
        _counter = (os.getpid() * 7) % 1_000_000

    return f"{now.strftime('%Y%m%dT%H%M%S')}{now.microsecond:06d}{_counter:06d}"


class Note(BaseModel):
    """A note. Titles are unique by convention, not by enforcement."""

    id: str = Field(default_factory=generate_id, description="Opaque note ID")
    title: str = Field(..., description="Title, used as the reference target")
    content: str = Field(default="", description="Markdown body")
    last_changed_epoch_millis: int = Field(
        default_factory=epoch_millis, description="Last local or remote change"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v


class NoteMetadata(BaseModel):
    """File metadata returned by a storage backend after creating a file."""

    id: str
    title: str
    last_changed_epoch_millis: int = Field(default_factory=epoch_millis)
    created_epoch_millis: int = Field(default_factory=epoch_millis)
    mime_type: str = TEXT_MIMETYPE


class Reference(BaseModel):
    """A resolved ``[[title]]`` reference inside a note body."""

    title: str
    offset: int = Field(..., ge=0, description="Index of the first title character")
    source_note_id: Optional[str] = None

    model_config = {"frozen": True}


class NoteAndLinks(BaseModel):
    """One node of the note graph with its outgoing resolved references."""

    note_id: str
    note_title: str
    connected_to: List[str] = Field(default_factory=list)
    last_changed: int = 0


class TagGroup(BaseModel):
    """Notes carrying a tag plus the aggregated change time of the subtree."""

    tag: str
    note_ids: List[str] = Field(default_factory=list)
    newest_note_change_timestamp: int = 0


class FlashcardLearningData(BaseModel):
    """SM-2 learning state of a flashcard."""

    easiness_factor: float = Field(default=DEFAULT_EASINESS_FACTOR, ge=MIN_EASINESS_FACTOR)
    num_repetitions: int = Field(default=0, ge=0)
    prev_repetition_epoch_millis: int = Field(default=0, ge=0)
    prev_repetition_interval_millis: int = Field(default=0, ge=0)

    model_config = {"validate_assignment": True}


def initial_flashcard_learning_data() -> FlashcardLearningData:
    """Fresh learning state for a never-rated card (never shared)."""
    return FlashcardLearningData()


class Flashcard(BaseModel):
    """A two-sided flashcard."""

    id: str = Field(default_factory=generate_id)
    created_epoch_millis: int = Field(default_factory=epoch_millis)
    last_changed_epoch_millis: int = Field(default_factory=epoch_millis)
    tags: List[str] = Field(default_factory=list)
    side1: str = ""
    side2: str = ""
    is_two_way: bool = True
    learning_data: FlashcardLearningData = Field(
        default_factory=initial_flashcard_learning_data
    )
    # Cached by the scheduler, recomputed lazily when missing
    next_repetition_epoch_millis: Optional[int] = None

    model_config = {"validate_assignment": True}


class Theme(str, Enum):
    """UI theme stored in user settings."""

    LIGHT = "light"
    DARK = "dark"
    DEVICE = "device"


class UserSettings(BaseModel):
    """User settings payload persisted by the backend."""

    theme: Optional[Theme] = None
    ignored_tags: List[str] = Field(default_factory=list)
    flashcard_initial_delay_periods: Optional[List[int]] = None

    model_config = {"extra": "allow"}


class BackendStatusNotificationType(str, Enum):
    POPUP = "popup"
    MOLE = "mole"


class BackendStatusNotification(BaseModel):
    """A user-visible status message. Reusing an ID overwrites the message."""

    id: str
    message: str
    remove_after_millis: Optional[int] = None
    type: BackendStatusNotificationType = BackendStatusNotificationType.MOLE


class SortDirection(str, Enum):
    """Orderings offered for tags and notes in tag groups."""

    MODIFIED_NEWEST_FIRST = "modified_newest_first"
    MODIFIED_OLDEST_FIRST = "modified_oldest_first"
    ALPHABETICAL = "alphabetical"
    ALPHABETICAL_REVERSED = "alphabetical_reversed"


class FormattedSegment(BaseModel):
    text: str
    highlighted: bool = False


class SearchResult(BaseModel):
    """A single note search hit with highlighted title and content samples."""

    note_id: str
    title_segments: List[FormattedSegment] = Field(default_factory=list)
    content_segments: List[List[FormattedSegment]] = Field(default_factory=list)
    num_content_matches: int = 0


@dataclass
class RenameResult:
    """Outcome of renaming a note.

    Attributes:
        renamed_note_count: Notes whose content referenced the old title.
        renamed_back_ref_count: Reference occurrences rewritten in total.
        completion: Awaitable that resolves once every content save landed.
    """

    renamed_note_count: int
    renamed_back_ref_count: int
    completion: Awaitable[List[bool]]
