"""Line metrics and display diffs between two versions of a poem.

Two different comparisons live here:

- ``compute_line_changes`` produces the metrics stored on each revision.
  It aligns lines by index only: line ``i`` of the old text is compared
  with line ``i`` of the new text, so an insertion in the middle of a
  poem counts every following line as modified.
- ``diff_segments`` produces a line-oriented diff for display using
  ``difflib``. It is never persisted.
"""

import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DiffType(str, Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    DELETED = "deleted"


@dataclass
class DiffSegment:
    """A run of text that is unchanged, added or deleted."""

    text: str
    type: DiffType
    word_count: int = 0


@dataclass(frozen=True)
class LineChanges:
    added: int = 0
    removed: int = 0
    modified: int = 0


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_lines(content: Optional[str]) -> list[str]:
    """Split content into lines; empty content has no lines."""
    if not content:
        return []
    return normalize_newlines(content).splitlines()


def count_words(content: Optional[str]) -> int:
    if not content:
        return 0
    return len(content.split())


def count_lines(content: Optional[str]) -> int:
    return len(split_lines(content))


def compute_line_changes(old: Optional[str], new: Optional[str]) -> LineChanges:
    """Positional line metrics between two versions.

    Args:
        old: Parent revision content, or None for the first revision
        new: New content
    """
    new_lines = split_lines(new)
    if old is None:
        return LineChanges(added=len(new_lines))

    old_lines = split_lines(old)
    modified = sum(
        1 for i in range(min(len(old_lines), len(new_lines))) if old_lines[i] != new_lines[i]
    )
    return LineChanges(
        added=max(0, len(new_lines) - len(old_lines)),
        removed=max(0, len(old_lines) - len(new_lines)),
        modified=modified,
    )


def diff_segments(old: str, new: str) -> list[DiffSegment]:
    """Partition two texts into unchanged, added and deleted line runs.

    Concatenating the unchanged and deleted segments gives back ``old``;
    concatenating the unchanged and added segments gives back ``new``
    (after newline normalization).
    """
    old_lines = normalize_newlines(old or "").splitlines(keepends=True)
    new_lines = normalize_newlines(new or "").splitlines(keepends=True)

    segments: list[DiffSegment] = []
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            _append(segments, "".join(old_lines[i1:i2]), DiffType.UNCHANGED)
            continue
        if tag in ("delete", "replace"):
            _append(segments, "".join(old_lines[i1:i2]), DiffType.DELETED)
        if tag in ("insert", "replace"):
            _append(segments, "".join(new_lines[j1:j2]), DiffType.ADDED)
    return segments


def _append(segments: list[DiffSegment], text: str, diff_type: DiffType) -> None:
    """Append text, merging into the previous segment when types match."""
    if not text:
        return
    if segments and segments[-1].type == diff_type:
        last = segments[-1]
        last.text += text
        last.word_count = count_words(last.text)
        return
    segments.append(DiffSegment(text=text, type=diff_type, word_count=count_words(text)))
