"""Tests for line metrics and display diffs."""

import pytest

from poemsync.revisions.diff import (
    DiffType,
    LineChanges,
    compute_line_changes,
    count_lines,
    count_words,
    diff_segments,
    split_lines,
)


class TestCounting:
    """Tests for word and line counts."""

    @pytest.mark.parametrize(
        "content,expected",
        [
            (None, []),
            ("", []),
            ("one", ["one"]),
            ("one\ntwo", ["one", "two"]),
            ("one\ntwo\n", ["one", "two"]),
            ("one\r\ntwo\rthree", ["one", "two", "three"]),
            ("one\n\nthree", ["one", "", "three"]),
        ],
    )
    def test_split_lines(self, content, expected):
        assert split_lines(content) == expected

    def test_count_words(self):
        assert count_words("Cold rain on the roof\nleaves fall") == 7
        assert count_words("   ") == 0
        assert count_words(None) == 0

    def test_count_lines(self):
        assert count_lines("a\nb\nc") == 3
        assert count_lines("") == 0


class TestLineChanges:
    """Tests for positional line metrics."""

    def test_first_revision(self):
        assert compute_line_changes(None, "a\nb\nc") == LineChanges(added=3)

    def test_first_revision_empty(self):
        assert compute_line_changes(None, "") == LineChanges()

    def test_identical(self):
        assert compute_line_changes("a\nb", "a\nb") == LineChanges()

    def test_modified_line(self):
        assert compute_line_changes("a\nb\nc", "a\nB\nc") == LineChanges(modified=1)

    def test_appended_lines(self):
        assert compute_line_changes("a", "a\nb\nc") == LineChanges(added=2)

    def test_removed_lines(self):
        assert compute_line_changes("a\nb\nc", "a") == LineChanges(removed=2)

    def test_insertion_shifts_lines(self):
        """Test that lines are compared by position, not aligned."""
        changes = compute_line_changes("a\nb\nc", "a\nX\nb\nc")
        assert changes == LineChanges(added=1, modified=2)

    def test_from_empty(self):
        assert compute_line_changes("", "a\nb") == LineChanges(added=2)


class TestDiffSegments:
    """Tests for display diffs."""

    def test_identical(self):
        segments = diff_segments("a\nb\n", "a\nb\n")
        assert len(segments) == 1
        assert segments[0].type == DiffType.UNCHANGED
        assert segments[0].text == "a\nb\n"
        assert segments[0].word_count == 2

    def test_replacement(self):
        segments = diff_segments("a\nb\nc\n", "a\nB\nc\n")
        assert [(s.type, s.text) for s in segments] == [
            (DiffType.UNCHANGED, "a\n"),
            (DiffType.DELETED, "b\n"),
            (DiffType.ADDED, "B\n"),
            (DiffType.UNCHANGED, "c\n"),
        ]

    def test_insertion(self):
        segments = diff_segments("a\nc", "a\nb\nc")
        assert [s.type for s in segments] == [
            DiffType.UNCHANGED, DiffType.ADDED, DiffType.UNCHANGED,
        ]
        assert segments[1].text == "b\n"

    def test_from_empty(self):
        segments = diff_segments("", "new poem")
        assert [(s.type, s.text) for s in segments] == [(DiffType.ADDED, "new poem")]

    def test_to_empty(self):
        segments = diff_segments("old poem", "")
        assert [(s.type, s.text) for s in segments] == [(DiffType.DELETED, "old poem")]

    def test_reconstruction(self):
        old = "first line\nsecond line\nthird line\n"
        new = "first line\n2nd line\nthird line\nfourth line\n"
        segments = diff_segments(old, new)

        rebuilt_old = "".join(s.text for s in segments if s.type != DiffType.ADDED)
        rebuilt_new = "".join(s.text for s in segments if s.type != DiffType.DELETED)
        assert rebuilt_old == old
        assert rebuilt_new == new

    def test_no_adjacent_segments_of_same_type(self):
        segments = diff_segments("a\nb\nc\nd\n", "x\ny\nz\nw\n")
        types = [s.type for s in segments]
        assert all(a != b for a, b in zip(types, types[1:]))
