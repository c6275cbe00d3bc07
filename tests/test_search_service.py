"""Tests for note search."""
from connected_notes.models.schema import FormattedSegment, Note
from connected_notes.services.note_graph import NoteGraphIndex
from connected_notes.services.search_service import (
    SearchService,
    find_occurrences,
    get_content_matches,
    get_indices_covered_by_words,
    split_to_highlighted_parts,
)


class TestHighlighting:
    def test_indices_covered_by_words(self):
        assert get_indices_covered_by_words("aabaa", ["ba"]) == [False, False, True, True, False]

    def test_overlapping_occurrences(self):
        assert get_indices_covered_by_words("aaa", ["aa"]) == [True, True, True]

    def test_split_to_highlighted_parts(self):
        parts = split_to_highlighted_parts("aabaa", [False, False, True, True, False])
        assert parts == [
            FormattedSegment(text="aa", highlighted=False),
            FormattedSegment(text="ba", highlighted=True),
            FormattedSegment(text="a", highlighted=False),
        ]


class TestContentMatches:
    def test_short_content_has_no_ellipsis(self):
        count, samples = get_content_matches("find me here", "me")
        assert count == 1
        assert [s.text for s in samples[0]] == ["find ", "me", " here"]

    def test_long_content_is_trimmed(self):
        content = "x" * 30 + "needle" + "y" * 30
        count, samples = get_content_matches(content, "NEEDLE")
        assert count == 1
        before, match, after = samples[0]
        assert before.text == "..." + "x" * 20
        assert match.text == "needle" and match.highlighted
        assert after.text == "y" * 20 + "..."

    def test_counts_all_matches_but_samples_one(self):
        count, samples = get_content_matches("ab ab ab", "ab")
        assert count == 3
        assert len(samples) == 1


class TestSearchService:
    def _service(self):
        notes = [
            Note(id="1", title="Python notes", content="nothing"),
            Note(id="2", title="Other", content="I like python a lot"),
            Note(id="3", title="Unrelated", content="none"),
        ]
        return SearchService(NoteGraphIndex(notes))

    def test_title_matches_first(self):
        results = self._service().search("python")
        assert [r.note_id for r in results] == ["1", "2"]
        assert results[0].title_segments[0] == FormattedSegment(text="Python", highlighted=True)
        assert results[1].title_segments == [FormattedSegment(text="Other", highlighted=False)]
        assert results[1].num_content_matches == 1

    def test_empty_term(self):
        assert self._service().search("") == []

    def test_no_match(self):
        assert self._service().search("zzz") == []


class TestLengthChangingCase:
    """Characters whose lowercase form is longer must not shift offsets."""

    def test_find_occurrences_index_original_text(self):
        assert find_occurrences("İİİ foo FOO", "foo") == [(4, 7), (8, 11)]

    def test_content_snippet_highlights_match(self):
        count, samples = get_content_matches("İİİ foo bar", "foo")
        assert count == 1
        assert [s.text for s in samples[0]] == ["İİİ ", "foo", " bar"]

    def test_title_highlight(self):
        service = SearchService(NoteGraphIndex([Note(id="1", title="İx foo", content="")]))
        [result] = service.search("foo")
        assert result.title_segments == [
            FormattedSegment(text="İx ", highlighted=False),
            FormattedSegment(text="foo", highlighted=True),
        ]
