"""Configuration module for the Connected Notes core."""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from connected_notes.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the local note store
_USER_ENV = Path.home() / ".connected-notes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

MILLIS_PER_DAY = 24 * 60 * 60 * 1000

# Delays before the first and second review of a new flashcard
DEFAULT_INITIAL_DELAY_PERIODS = [MILLIS_PER_DAY, 6 * MILLIS_PER_DAY]


class TagRecencyMode(str, Enum):
    """How a tag group folds the change timestamps of its notes and subtags."""

    NEWEST = "newest"  # Most recent change wins (max)
    OLDEST = "oldest"  # Running minimum, kept for compatibility with old data


def parse_delay_periods(raw: Optional[str]) -> List[int]:
    """Parse a comma-separated list of millisecond delays.

    Args:
        raw: String such as ``"86400000,518400000"``. Empty or None yields
            the default schedule.

    Returns:
        List of delays in milliseconds.

    Raises:
        ValueError: If any entry is not an integer.
    """
    if not raw or not raw.strip():
        return list(DEFAULT_INITIAL_DELAY_PERIODS)
    return [int(part.strip()) for part in raw.split(",") if part.strip()]


class NotesConfig(BaseModel):
    """Configuration for the note graph, tag hierarchy and scheduler."""

    # Root directory for the local markdown store
    data_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("CONNECTED_NOTES_DATA_DIR", "data/notes")
        )
    )
    # Logging configuration
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("CONNECTED_NOTES_LOG_DIR"))
            if os.getenv("CONNECTED_NOTES_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("CONNECTED_NOTES_LOG_LEVEL", "INFO")
    )
    # Spaced repetition: delays used for the first K reviews of a card.
    # User settings override this when they carry their own schedule.
    flashcard_initial_delay_periods: List[int] = Field(
        default_factory=lambda: parse_delay_periods(
            os.getenv("CONNECTED_NOTES_FLASHCARD_INITIAL_DELAYS")
        )
    )
    # Quiet period before a burst of flashcard updates is merged
    flashcard_debounce_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv("CONNECTED_NOTES_FLASHCARD_DEBOUNCE_SECONDS", "0.5")
        )
    )
    tag_recency_mode: TagRecencyMode = Field(
        default_factory=lambda: TagRecencyMode(
            os.getenv("CONNECTED_NOTES_TAG_RECENCY_MODE", "newest").lower()
        )
    )
    # How long a "failed to save" notification stays visible (None = sticky)
    save_failure_notification_millis: Optional[int] = Field(
        default_factory=lambda: (
            int(os.getenv("CONNECTED_NOTES_SAVE_FAILURE_NOTIFICATION_MILLIS"))
            if os.getenv("CONNECTED_NOTES_SAVE_FAILURE_NOTIFICATION_MILLIS")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_scheduler_config(self) -> "NotesConfig":
        """Validate scheduler settings.

        Raises:
            ConfigurationError: If the delays or the debounce period are invalid.
        """
        if not self.flashcard_initial_delay_periods:
            raise ConfigurationError(
                "flashcard_initial_delay_periods must not be empty",
                config_key="flashcard_initial_delay_periods",
            )
        if any(delay < 0 for delay in self.flashcard_initial_delay_periods):
            raise ConfigurationError(
                "flashcard_initial_delay_periods must be >= 0",
                config_key="flashcard_initial_delay_periods",
            )
        if self.flashcard_debounce_seconds < 0:
            raise ConfigurationError(
                "flashcard_debounce_seconds must be >= 0",
                config_key="flashcard_debounce_seconds",
            )

        if self.tag_recency_mode == TagRecencyMode.OLDEST:
            logger.warning(
                "Tag recency mode is 'oldest': tag groups report the oldest "
                "note change instead of the newest."
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on the CWD."""
        if path.is_absolute():
            return path
        return Path.cwd() / path

    def get_data_dir(self) -> Path:
        """Get the absolute data directory, creating it if needed."""
        data_dir = self.get_absolute_path(self.data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir


# Create a global config instance
config = NotesConfig()
