"""Tests for the data models in the Connected Notes core."""
import re

import pytest
from pydantic import ValidationError

from connected_notes.models.schema import (
    DEFAULT_EASINESS_FACTOR,
    Flashcard,
    FlashcardLearningData,
    Note,
    Reference,
    UserSettings,
    epoch_millis,
    generate_id,
    initial_flashcard_learning_data,
)


class TestNoteModel:
    """Tests for the Note model."""

    def test_note_defaults(self):
        note = Note(title="Test Note")
        assert note.id
        assert note.content == ""
        assert note.last_changed_epoch_millis > 0

    def test_note_validation(self):
        with pytest.raises(ValidationError):
            Note(title="   ")
        note = Note(title="Ok")
        with pytest.raises(ValidationError):
            note.title = ""

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError):
            Note(title="T", tags=["#a"])


class TestIds:
    def test_generate_id_format_and_uniqueness(self):
        ids = {generate_id() for _ in range(200)}
        assert len(ids) == 200
        assert all(re.fullmatch(r"\d{8}T\d{18}", i) for i in ids)

    def test_epoch_millis_is_recent(self):
        assert epoch_millis() > 1_600_000_000_000


class TestFlashcardModels:
    def test_initial_learning_data_is_fresh(self):
        first = initial_flashcard_learning_data()
        second = initial_flashcard_learning_data()
        first.num_repetitions = 3
        assert second.num_repetitions == 0
        assert second.easiness_factor == DEFAULT_EASINESS_FACTOR

    def test_easiness_floor_enforced(self):
        with pytest.raises(ValidationError):
            FlashcardLearningData(easiness_factor=1.0)

    def test_flashcard_json_round_trip(self):
        card = Flashcard(side1="q", side2="a", tags=["#x"])
        assert Flashcard.model_validate_json(card.model_dump_json()) == card

    def test_default_learning_data_not_shared(self):
        assert Flashcard().learning_data is not Flashcard().learning_data


class TestMisc:
    def test_reference_is_frozen(self):
        ref = Reference(title="a", offset=2)
        with pytest.raises(ValidationError):
            ref.offset = 3

    def test_user_settings_keep_unknown_keys(self):
        settings = UserSettings.model_validate({"ignored_tags": ["#a"], "fontSize": 12})
        assert settings.model_dump()["fontSize"] == 12
