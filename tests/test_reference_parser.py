"""Tests for bracketed reference parsing."""
import pytest

from connected_notes.services.reference_parser import (
    extract_references,
    make_reference,
    referenced_titles,
)


class TestExtractReferences:
    """Tests for extract_references."""

    def test_offset_points_at_first_title_character(self):
        refs = extract_references("asdasd [[qweqwe]]", {"qweqwe"})
        assert len(refs) == 1
        assert refs[0].title == "qweqwe"
        assert refs[0].offset == 9

    def test_unknown_titles_are_skipped(self):
        refs = extract_references("[[nope]] [[yes]]", {"yes"})
        assert [r.title for r in refs] == ["yes"]
        assert refs[0].offset == 11

    def test_titles_are_case_sensitive(self):
        assert extract_references("[[Title]]", {"title"}) == []

    def test_repeated_references_are_all_returned(self):
        refs = extract_references("[[a]] then [[a]]", {"a"})
        assert [r.offset for r in refs] == [2, 13]

    def test_extra_opening_brackets_are_skipped(self):
        refs = extract_references("x [[[[title]] y", {"title"})
        assert len(refs) == 1
        assert refs[0].offset == 6

    def test_unclosed_opener_stops_the_scan(self):
        """An opener with no closing brackets ends parsing instead of looping."""
        refs = extract_references("[[a]] [[dangling [[a]", {"a"})
        assert [r.title for r in refs] == ["a"]

    def test_empty_content(self):
        assert extract_references("", {"a"}) == []

    def test_source_note_id_is_recorded(self):
        refs = extract_references("[[a]]", {"a"}, source_note_id="n1")
        assert refs[0].source_note_id == "n1"

    def test_title_with_spaces_and_unicode(self):
        refs = extract_references("see [[Kaffee über alles]]", {"Kaffee über alles"})
        assert refs[0].offset == 6


class TestHelpers:
    def test_referenced_titles_preserves_multiplicity(self):
        assert referenced_titles("[[Y]] and [[Y]]", {"Y"}) == ["Y", "Y"]

    @pytest.mark.parametrize("title", ["a", "Some title", "ä"])
    def test_make_reference(self, title):
        token = make_reference(title)
        assert token == f"[[{title}]]"
        assert referenced_titles(token, {title}) == [title]
