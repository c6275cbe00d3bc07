"""Local filesystem backend storing notes as markdown files.

Layout under the data directory::

    notes/<id>.md            note body with YAML frontmatter
    flashcards/<id>.json     serialized flashcard
    nested_tag_groups.json   parent tag -> child tags
    settings.json            user settings
"""
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from connected_notes.config import config
from connected_notes.exceptions import (
    ErrorCode,
    FlashcardNotFoundError,
    NoteNotFoundError,
    NoteValidationError,
    StorageError,
    ValidationError,
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
from connected_notes.storage.markdown_parser import MarkdownParser

logger = logging.getLogger(__name__)

SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")

NESTED_TAG_GROUPS_FILE = "nested_tag_groups.json"
SETTINGS_FILE = "settings.json"


def validate_file_id(file_id: str) -> str:
    """Reject IDs that are not safe to use as a file name.

    Raises:
        ValidationError: If ``file_id`` is empty or contains anything other
            than letters, digits, '_' and '-'.
    """
    if not file_id or not SAFE_ID_PATTERN.match(file_id):
        raise ValidationError("Unsafe file ID", field="file_id", value=file_id)
    return file_id


def _write_atomic(path: Path, text: str) -> None:
    temp_file = path.with_suffix(path.suffix + ".tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        f.write(text)
    temp_file.replace(path)


class MarkdownBackend(StorageBackend):
    """Stores notes, flashcards, the tag hierarchy and settings on disk."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        super().__init__()
        self.data_dir = Path(data_dir) if data_dir else config.get_data_dir()
        self.notes_dir = self.data_dir / "notes"
        self.flashcards_dir = self.data_dir / "flashcards"
        self.parser = MarkdownParser()

    async def initialize(self) -> None:
        try:
            self.notes_dir.mkdir(parents=True, exist_ok=True)
            self.flashcards_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                "Cannot create data directory",
                operation="initialize",
                path=str(self.data_dir),
                code=ErrorCode.STORAGE_UNAVAILABLE,
                original_error=e,
            ) from e
        logger.info(f"Markdown backend using {self.data_dir}")
        self._publish()

    async def refresh(self) -> None:
        self._publish()

    def _publish(self) -> None:
        self.notes.next(self._load_notes())
        self.flashcards.next(self._load_flashcards())
        self.nested_tag_groups.next(self._load_nested_tag_groups())
        self.stored_settings.next(self._load_settings())

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_notes(self) -> List[Note]:
        notes: List[Note] = []
        failed_files: List[str] = []
        for file_path in sorted(self.notes_dir.glob("*.md")):
            try:
                notes.append(self.parser.parse_note(file_path.read_text(encoding="utf-8")))
            except OSError as e:
                logger.error(f"Cannot read file {file_path.name}: {e}")
                failed_files.append(file_path.name)
            except (NoteValidationError, ValueError, yaml.YAMLError) as e:
                # Malformed frontmatter or missing required fields
                logger.error(f"Invalid note format in {file_path.name}: {e}")
                failed_files.append(file_path.name)
        if failed_files:
            logger.warning(f"Skipped {len(failed_files)} unreadable note files")
        logger.debug(f"Loaded {len(notes)} notes from {self.notes_dir}")
        return notes

    def _load_flashcards(self) -> List[Flashcard]:
        flashcards: List[Flashcard] = []
        for file_path in sorted(self.flashcards_dir.glob("*.json")):
            try:
                flashcards.append(
                    Flashcard.model_validate_json(file_path.read_text(encoding="utf-8"))
                )
            except (OSError, ValueError) as e:
                logger.error(f"Invalid flashcard file {file_path.name}: {e}")
        return flashcards

    def _read_json(self, path: Path) -> Optional[object]:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read {path.name}: {e}")
            return None

    def _load_nested_tag_groups(self) -> ParentTagToChildTags:
        data = self._read_json(self.data_dir / NESTED_TAG_GROUPS_FILE)
        if not isinstance(data, dict):
            return {}
        return {
            str(parent): [str(child) for child in children]
            for parent, children in data.items()
            if isinstance(children, list)
        }

    def _load_settings(self) -> UserSettings:
        data = self._read_json(self.data_dir / SETTINGS_FILE)
        if not isinstance(data, dict):
            return UserSettings()
        try:
            return UserSettings.model_validate(data)
        except ValueError as e:
            logger.error(f"Invalid settings file, using defaults: {e}")
            return UserSettings()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _note_path(self, note_id: str) -> Path:
        return self.notes_dir / f"{validate_file_id(note_id)}.md"

    def _flashcard_path(self, flashcard_id: str) -> Path:
        return self.flashcards_dir / f"{validate_file_id(flashcard_id)}.json"

    def _write(self, path: Path, text: str, operation: str) -> None:
        try:
            _write_atomic(path, text)
        except OSError as e:
            raise StorageError(
                f"Failed to write {path.name}",
                operation=operation,
                path=str(path),
                original_error=e,
            ) from e

    def _read_note_file(self, note_id: str) -> str:
        path = self._note_path(note_id)
        if not path.exists():
            raise NoteNotFoundError(note_id)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(
                f"Failed to read note {note_id}",
                operation="read",
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def _rewrite_note(self, note_id: str, operation: str, **changes) -> None:
        raw = self._read_note_file(note_id)
        note = self.parser.parse_note(raw)
        for key, value in changes.items():
            setattr(note, key, value)
        note.last_changed_epoch_millis = epoch_millis()
        markdown = self.parser.render_to_markdown(
            note,
            created_epoch_millis=self.parser.created_epoch_millis(raw),
            extra=self.parser.extra_metadata(raw),
        )
        self._write(self._note_path(note_id), markdown, operation)

    async def create_note(self, title: str) -> NoteMetadata:
        note = Note(title=title)
        created = note.last_changed_epoch_millis
        self._write(
            self._note_path(note.id),
            self.parser.render_to_markdown(note, created_epoch_millis=created),
            "create",
        )
        logger.debug(f"Created note {note.id}")
        return NoteMetadata(
            id=note.id,
            title=note.title,
            last_changed_epoch_millis=created,
            created_epoch_millis=created,
        )

    async def rename_file(self, file_id: str, title: str) -> None:
        self._rewrite_note(file_id, "rename", title=title)

    async def delete_file(self, file_id: str) -> None:
        for path in (self._note_path(file_id), self._flashcard_path(file_id)):
            if not path.exists():
                continue
            try:
                path.unlink()
            except OSError as e:
                raise StorageError(
                    f"Failed to delete {file_id}",
                    operation="delete",
                    path=str(path),
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e
            return
        raise NoteNotFoundError(file_id)

    async def save_content(
        self,
        file_id: str,
        content: str,
        notify: bool = True,
        mime_type: str = TEXT_MIMETYPE,
    ) -> None:
        if mime_type == JSON_MIMETYPE:
            path = self._flashcard_path(file_id)
            if not path.exists():
                raise FlashcardNotFoundError(file_id)
            self._write(path, content, "save_content")
            return
        self._rewrite_note(file_id, "save_content", content=content)

    async def save_nested_tag_groups(self, nested_tag_groups: ParentTagToChildTags) -> None:
        self._write(
            self.data_dir / NESTED_TAG_GROUPS_FILE,
            json.dumps(nested_tag_groups, indent=2),
            "save_nested_tag_groups",
        )

    async def save_settings(self, settings: UserSettings) -> None:
        self._write(
            self.data_dir / SETTINGS_FILE,
            settings.model_dump_json(indent=2),
            "save_settings",
        )

    async def create_flashcard(self, flashcard: Flashcard) -> NoteMetadata:
        stored = flashcard.model_copy(deep=True)
        stored.id = generate_id()
        self._write(self._flashcard_path(stored.id), stored.model_dump_json(), "create_flashcard")
        return NoteMetadata(
            id=stored.id,
            title=stored.id,
            last_changed_epoch_millis=stored.last_changed_epoch_millis,
            created_epoch_millis=stored.created_epoch_millis,
            mime_type=JSON_MIMETYPE,
        )

    def stored_files(self) -> Dict[str, List[str]]:
        """IDs of the note and flashcard files currently on disk."""
        return {
            "notes": sorted(p.stem for p in self.notes_dir.glob("*.md")),
            "flashcards": sorted(p.stem for p in self.flashcards_dir.glob("*.json")),
        }
