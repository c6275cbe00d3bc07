"""SM-2 style flashcard scheduling."""
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from connected_notes.config import NotesConfig
from connected_notes.exceptions import ErrorCode, ValidationError
from connected_notes.models.schema import (
    MIN_EASINESS_FACTOR,
    Flashcard,
    FlashcardLearningData,
    UserSettings,
    initial_flashcard_learning_data,
)
from connected_notes.observability import get_logger
from connected_notes.reactive import Debouncer, Signal

if TYPE_CHECKING:
    from connected_notes.services.note_service import NoteService

logger = logging.getLogger(__name__)
slog = get_logger("scheduler")

VALID_RATINGS = (0, 1, 2, 3)


def get_new_easiness_factor(previous: float, rating: int) -> float:
    """SM-2 easiness update for a rating between 0 and 3, floored at 1.3."""
    return max(
        MIN_EASINESS_FACTOR,
        previous - 0.8 + 0.28 * rating - 0.02 * rating * rating,
    )


def get_next_repetition_time_epoch_millis(
    flashcard: Flashcard, initial_delay_periods: List[int]
) -> int:
    """When ``flashcard`` is next due.

    The first reviews use the fixed ``initial_delay_periods``; after that
    the previous interval is stretched by the easiness factor. A card that
    was never rated counts from its creation time.
    """
    learning_data = flashcard.learning_data
    prev_repetition = (
        learning_data.prev_repetition_epoch_millis or flashcard.created_epoch_millis
    )
    if learning_data.num_repetitions < len(initial_delay_periods):
        return prev_repetition + initial_delay_periods[learning_data.num_repetitions]
    return prev_repetition + int(
        learning_data.prev_repetition_interval_millis * learning_data.easiness_factor
    )


class SpacedRepetitionScheduler:
    """Keeps the due flashcards of a ``NoteService`` up to date.

    Incoming flashcard collections are debounced, so a burst of saves leads
    to a single merge. Ratings update the local card immediately and are
    persisted through the note service.
    """

    def __init__(
        self,
        notes: "NoteService",
        config: Optional[NotesConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._notes = notes
        self.config = config or notes.config
        self._clock = clock or notes.clock
        self._by_id: Dict[str, Flashcard] = {}

        self.flashcards: Signal[List[Flashcard]] = Signal([], name="scheduled_flashcards")
        self.due_flashcards: Signal[List[Flashcard]] = Signal([], name="due_flashcards")
        self.num_due_flashcards: Signal[int] = Signal(0, name="num_due_flashcards")

        self._debouncer: Debouncer[List[Flashcard]] = Debouncer(
            self.config.flashcard_debounce_seconds, self._merge_flashcards
        )
        self._subscription = notes.flashcards.subscribe(self._debouncer.trigger)
        self._settings_subscription = notes.stored_settings.subscribe(self._on_settings)

    @property
    def initial_delay_periods(self) -> List[int]:
        """Delays for the first reviews; user settings override the config."""
        settings = self._notes.stored_settings.value
        if settings is not None and settings.flashcard_initial_delay_periods:
            return list(settings.flashcard_initial_delay_periods)
        return list(self.config.flashcard_initial_delay_periods)

    def get_next_repetition_time_epoch_millis(self, flashcard: Flashcard) -> int:
        return get_next_repetition_time_epoch_millis(flashcard, self.initial_delay_periods)

    def _next_due(self, flashcard: Flashcard) -> int:
        # Recomputed on every read; settings may have changed the delays
        flashcard.next_repetition_epoch_millis = self.get_next_repetition_time_epoch_millis(
            flashcard
        )
        return flashcard.next_repetition_epoch_millis

    def is_due(self, flashcard: Flashcard) -> bool:
        return self._clock() >= self._next_due(flashcard)

    def get_due_flashcards(self) -> List[Flashcard]:
        """Due cards, least recently reviewed first. Each card appears once."""
        due = [flashcard for flashcard in self._by_id.values() if self.is_due(flashcard)]
        due.sort(key=lambda f: f.learning_data.prev_repetition_epoch_millis)
        return due

    def refresh(self) -> List[Flashcard]:
        """Recompute the due list, e.g. after time has passed."""
        due = self.get_due_flashcards()
        self.due_flashcards.next(due)
        self.num_due_flashcards.next(len(due))
        return due

    def flush(self) -> None:
        """Merge a pending debounced update right away."""
        self._debouncer.flush()

    def _on_settings(self, settings: Optional[UserSettings]) -> None:
        if self._by_id:
            self.refresh()

    def _merge_flashcards(self, flashcards: List[Flashcard]) -> None:
        by_id: Dict[str, Flashcard] = {}
        for flashcard in flashcards:
            flashcard.next_repetition_epoch_millis = self.get_next_repetition_time_epoch_millis(
                flashcard
            )
            by_id[flashcard.id] = flashcard
        self._by_id = by_id
        self.flashcards.next(list(by_id.values()))
        due = self.refresh()
        slog.debug("Merged flashcards", total=len(by_id), due=len(due))

    async def submit_flashcard_rating(self, rating: int, flashcard: Flashcard) -> bool:
        """Apply a review rating and persist the card.

        Rating 0 restarts learning from scratch. Ratings 1 to 3 count as a
        successful repetition and adjust the easiness factor.

        Args:
            rating: 0 (forgotten) to 3 (easy).
            flashcard: Card being reviewed.

        Returns:
            Whether the backend accepted the update.

        Raises:
            ValidationError: If ``rating`` is not an integer between 0 and 3.
        """
        if isinstance(rating, bool) or rating not in VALID_RATINGS:
            raise ValidationError(
                "Rating must be 0, 1, 2 or 3",
                field="rating",
                value=rating,
                code=ErrorCode.FLASHCARD_RATING_INVALID,
            )

        now = self._clock()
        previous = flashcard.learning_data
        if rating == 0:
            learning_data = initial_flashcard_learning_data()
            learning_data.prev_repetition_epoch_millis = now
        else:
            prev_repetition = (
                previous.prev_repetition_epoch_millis or flashcard.created_epoch_millis
            )
            learning_data = FlashcardLearningData(
                easiness_factor=get_new_easiness_factor(previous.easiness_factor, rating),
                num_repetitions=previous.num_repetitions + 1,
                prev_repetition_epoch_millis=now,
                prev_repetition_interval_millis=max(0, now - prev_repetition),
            )

        flashcard.learning_data = learning_data
        flashcard.next_repetition_epoch_millis = self.get_next_repetition_time_epoch_millis(
            flashcard
        )
        self._by_id[flashcard.id] = flashcard
        self.refresh()
        slog.info(
            "Rated flashcard",
            flashcard_id=flashcard.id,
            rating=rating,
            repetitions=learning_data.num_repetitions,
        )
        return await self._notes.save_flashcard(flashcard)

    async def delete_flashcard(self, flashcard_id: str) -> bool:
        """Drop a card from the due list and delete it everywhere."""
        if self._by_id.pop(flashcard_id, None) is not None:
            self.flashcards.next(list(self._by_id.values()))
            self.refresh()
        return await self._notes.delete_flashcard(flashcard_id)

    def close(self) -> None:
        self._subscription.unsubscribe()
        self._settings_subscription.unsubscribe()
        self._debouncer.cancel()
