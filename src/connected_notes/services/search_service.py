"""Case-insensitive substring search over note titles and bodies."""
import logging
import re
from typing import List, Sequence, Tuple

from connected_notes.models.schema import FormattedSegment, Note, SearchResult
from connected_notes.services.note_graph import NoteGraphIndex

logger = logging.getLogger(__name__)

# Characters of context shown on each side of a content match
SNIPPET_CONTEXT_CHARS = 20
ELLIPSIS = "..."


def _term_pattern(term: str) -> "re.Pattern[str]":
    # Lookahead so overlapping occurrences are all found
    return re.compile(f"(?=({re.escape(term)}))", re.IGNORECASE)


def find_occurrences(text: str, term: str) -> List[Tuple[int, int]]:
    """Start and end offsets in ``text`` of every case-insensitive occurrence.

    Offsets index ``text`` itself, so they stay valid for characters whose
    lowercase form has a different length.
    """
    if not term:
        return []
    return [match.span(1) for match in _term_pattern(term).finditer(text)]


def get_indices_covered_by_words(text: str, words: Sequence[str]) -> List[bool]:
    """Flag every character of ``text`` that is part of an occurrence of a word.

    Matching ignores case. For ``"aabaa"`` and ``["ba"]`` this is
    ``[False, False, True, True, False]``. Overlapping occurrences are all
    flagged.
    """
    covered = [False] * len(text)
    for word in words:
        for start, end in find_occurrences(text, word):
            for i in range(start, end):
                covered[i] = True
    return covered


def split_to_highlighted_parts(text: str, highlighted: Sequence[bool]) -> List[FormattedSegment]:
    """Split ``text`` into runs of equally highlighted characters."""
    if not text:
        return [FormattedSegment(text="", highlighted=False)]
    segments: List[FormattedSegment] = []
    start = 0
    for i in range(1, len(highlighted)):
        if highlighted[i] != highlighted[i - 1]:
            segments.append(FormattedSegment(text=text[start:i], highlighted=highlighted[start]))
            start = i
    segments.append(FormattedSegment(text=text[start:], highlighted=highlighted[start]))
    return segments


def get_content_matches(
    content: str, term: str, max_samples: int = 1
) -> Tuple[int, List[List[FormattedSegment]]]:
    """Count occurrences of ``term`` and build context snippets.

    Returns:
        The number of (possibly overlapping) occurrences and up to
        ``max_samples`` snippets of the form ``[before, match, after]``.
    """
    occurrences = find_occurrences(content, term)

    samples: List[List[FormattedSegment]] = []
    for cur, match_end in occurrences[:max_samples]:
        prefix = ELLIPSIS if cur - SNIPPET_CONTEXT_CHARS > 0 else ""
        suffix = "" if match_end + SNIPPET_CONTEXT_CHARS >= len(content) else ELLIPSIS
        start = max(0, cur - SNIPPET_CONTEXT_CHARS)
        end = min(len(content), match_end + SNIPPET_CONTEXT_CHARS)
        samples.append(
            [
                FormattedSegment(text=prefix + content[start:cur], highlighted=False),
                FormattedSegment(text=content[cur:match_end], highlighted=True),
                FormattedSegment(text=content[match_end:end] + suffix, highlighted=False),
            ]
        )
    return len(occurrences), samples


class SearchService:
    """Searches the notes of a ``NoteGraphIndex``."""

    def __init__(self, graph: NoteGraphIndex):
        self.graph = graph

    def search(self, term: str) -> List[SearchResult]:
        """Find notes containing ``term``.

        Title matches come first, in note order, with the matching parts of
        the title highlighted. Notes matching only in their body follow.
        """
        if not term:
            return []
        pattern = _term_pattern(term)
        notes: List[Note] = self.graph.notes

        results: List[SearchResult] = []
        for note in notes:
            if not pattern.search(note.title):
                continue
            num_matches, samples = get_content_matches(note.content, term)
            results.append(
                SearchResult(
                    note_id=note.id,
                    title_segments=split_to_highlighted_parts(
                        note.title, get_indices_covered_by_words(note.title, [term])
                    ),
                    content_segments=samples,
                    num_content_matches=num_matches,
                )
            )

        already_added = {result.note_id for result in results}
        for note in notes:
            if note.id in already_added or not pattern.search(note.content):
                continue
            num_matches, samples = get_content_matches(note.content, term)
            results.append(
                SearchResult(
                    note_id=note.id,
                    title_segments=[FormattedSegment(text=note.title, highlighted=False)],
                    content_segments=samples,
                    num_content_matches=num_matches,
                )
            )

        logger.debug(f"Search for '{term}' matched {len(results)} notes")
        return results
