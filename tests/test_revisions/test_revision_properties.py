"""Property-based tests for revision history using Hypothesis."""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from poemsync.db.sqlite import Database
from poemsync.revisions.diff import DiffType, compute_line_changes, diff_segments, split_lines
from poemsync.revisions.ledger import RevisionLedger
from poemsync.sync.clock import FixedClock

settings.register_profile(
    "db_friendly",
    deadline=1000,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)
settings.load_profile("db_friendly")

# --- Strategies ---

# Letters, digits, punctuation and plain spaces: nothing str.splitlines() breaks on
st_line = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N", "P", "Zs")),
    max_size=30,
)
st_poem = st.lists(st_line, max_size=12).map("\n".join)


# --- Line metrics ---


@given(old=st_poem, new=st_poem)
def test_line_delta_matches_counts(old, new):
    changes = compute_line_changes(old, new)
    old_count = len(split_lines(old))
    new_count = len(split_lines(new))

    assert changes.added - changes.removed == new_count - old_count
    assert changes.modified <= min(old_count, new_count)
    assert changes.added == 0 or changes.removed == 0


@given(text=st_poem)
def test_identical_text_has_no_changes(text):
    changes = compute_line_changes(text, text)
    assert (changes.added, changes.removed, changes.modified) == (0, 0, 0)


@given(old=st_poem, new=st_poem)
def test_diff_rebuilds_both_sides(old, new):
    segments = diff_segments(old, new)
    assert "".join(s.text for s in segments if s.type != DiffType.ADDED) == old
    assert "".join(s.text for s in segments if s.type != DiffType.DELETED) == new


# --- Revision chains ---


@settings(max_examples=25)
@given(contents=st.lists(st_poem, min_size=1, max_size=6))
def test_chain_is_dense_and_linked(contents):
    database = Database(":memory:")
    database.create_tables()
    ledger = RevisionLedger(database, FixedClock())

    for content in contents:
        ledger.create_revision("doc", content)

    revisions = ledger.get_revisions("doc")
    assert [r.revision_number for r in revisions] == list(range(len(contents), 0, -1))
    assert [r.id for r in revisions if r.is_current_version] == [revisions[0].id]
    assert revisions[0].content == contents[-1]

    lineage = ledger.get_lineage("doc")
    assert [r.id for r in lineage] == [r.id for r in revisions]
    for child, parent in zip(lineage, lineage[1:]):
        assert child.parent_revision_id == parent.id
    assert lineage[-1].parent_revision_id is None
