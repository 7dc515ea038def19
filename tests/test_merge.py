"""
Tests for the two-way merge engine.

Tests cover:
- Union of disjoint collections
- Idempotence and commutativity
- Later-timestamp-wins with tag union
- Deterministic same-timestamp resolution
- Comment merging and tie-break
- Conflict markers and update counting
"""

from __future__ import annotations

from collections.abc import Callable

from worklog.core.items.models import Comment, WorkItem
from worklog.core.sync.merge import (
    canonical_key,
    count_updated_items,
    merge_comments,
    merge_work_items,
)
from worklog.core.sync.models import ChosenSource, ConflictType

T1 = "2024-01-01T00:00:00.000Z"
T2 = "2024-01-02T00:00:00.000Z"

ItemFactory = Callable[..., WorkItem]


def _by_id(items: list[WorkItem]) -> dict[str, WorkItem]:
    return {item.id: item for item in items}


class TestUnion:
    """Records present on one side only."""

    def test_disjoint_sets_union(self, make_item: ItemFactory) -> None:
        """Disjoint collections merge to their union with no conflicts."""
        local = [make_item("A"), make_item("B")]
        remote = [make_item("C")]

        merged, conflicts, details = merge_work_items(local, remote)

        assert [i.id for i in merged] == ["A", "B", "C"]
        assert conflicts == []
        assert details == []

    def test_empty_sides(self, make_item: ItemFactory) -> None:
        """Merging with an empty side returns the other side."""
        items = [make_item("A")]

        assert merge_work_items(items, []).merged == items
        assert merge_work_items([], items).merged == items

    def test_every_record_appears_once(self, make_item: ItemFactory) -> None:
        """Overlapping ids appear exactly once in the output."""
        local = [make_item("A"), make_item("B", title="local")]
        remote = [make_item("B", title="remote", updatedAt=T2), make_item("C")]

        merged = merge_work_items(local, remote).merged

        assert sorted(i.id for i in merged) == ["A", "B", "C"]


class TestIdempotence:
    """Merging a collection with itself."""

    def test_merge_with_self(self, make_item: ItemFactory) -> None:
        """merge(X, X) == X with no conflicts."""
        items = [
            make_item("A", tags=["x", "y"]),
            make_item("B", parentId="A", status="completed"),
        ]

        merged, conflicts, details = merge_work_items(items, items)

        assert merged == items
        assert conflicts == []
        assert details == []

    def test_tag_order_is_not_a_difference(self, make_item: ItemFactory) -> None:
        """Records differing only in tag order are identical."""
        local = [make_item("A", tags=["x", "y"])]
        remote = [make_item("A", tags=["y", "x"])]

        merged, conflicts, _ = merge_work_items(local, remote)

        assert conflicts == []
        assert merged[0].tags == ["x", "y"]

    def test_remerge_of_result_is_stable(self, make_item: ItemFactory) -> None:
        """Merging the merged result with either input changes nothing more."""
        local = [make_item("A", title="Old", tags=["x"], updatedAt=T1)]
        remote = [make_item("A", title="New", tags=["z"], updatedAt=T2)]

        merged = merge_work_items(local, remote).merged
        again = merge_work_items(merged, remote).merged
        twice = merge_work_items(merged, merged)

        assert again[0].title == "New"
        assert set(again[0].tags) == {"x", "z"}
        assert twice.merged == merged
        assert twice.conflicts == []


class TestDifferentTimestamps:
    """Later updatedAt wins field by field."""

    def test_later_timestamp_wins(self, make_item: ItemFactory) -> None:
        """Remote title wins when remote is newer."""
        local = [make_item("A", title="Old", updatedAt="2024-01-01")]
        remote = [make_item("A", title="New", updatedAt="2024-01-02")]

        merged, conflicts, details = merge_work_items(local, remote)

        assert merged[0].title == "New"
        assert len(details) == 1
        assert details[0].conflict_type == ConflictType.DIFFERENT_TIMESTAMP
        title = [f for f in details[0].fields if f.field == "title"]
        assert len(title) == 1
        assert title[0].chosen_source == ChosenSource.REMOTE
        assert title[0].local_value == "Old"
        assert title[0].remote_value == "New"
        assert title[0].chosen_value == "New"

    def test_local_newer_wins(self, make_item: ItemFactory) -> None:
        """Local values are kept when local is newer."""
        local = [make_item("A", title="Mine", status="completed", updatedAt=T2)]
        remote = [make_item("A", title="Theirs", status="blocked", updatedAt=T1)]

        merged, conflicts, details = merge_work_items(local, remote)

        assert merged[0].title == "Mine"
        assert merged[0].status.value == "completed"
        assert merged[0].updated_at == T2
        assert {f.chosen_source for f in details[0].fields} == {ChosenSource.LOCAL}
        assert "resolved using local values" in conflicts[0]

    def test_tags_union_regardless_of_winner(self, make_item: ItemFactory) -> None:
        """Tags from both sides survive even though remote wins other fields."""
        local = [make_item("A", tags=["x", "y"], title="Old", updatedAt=T1)]
        remote = [make_item("A", tags=["y", "z"], title="New", updatedAt=T2)]

        merged, conflicts, details = merge_work_items(local, remote)

        assert set(merged[0].tags) == {"x", "y", "z"}
        assert merged[0].title == "New"
        tags = [f for f in details[0].fields if f.field == "tags"]
        assert tags[0].chosen_source == ChosenSource.MERGED
        assert any("Merged fields [tags (union)]" in c for c in conflicts)

    def test_newer_timestamp_kept(self, make_item: ItemFactory) -> None:
        """The merged record carries the newer updatedAt."""
        local = [make_item("A", title="Old", updatedAt=T1)]
        remote = [make_item("A", title="New", updatedAt=T2)]

        assert merge_work_items(local, remote).merged[0].updated_at == T2

    def test_earliest_created_at_kept(self, make_item: ItemFactory) -> None:
        """createdAt keeps the earlier of the two values."""
        local = [make_item("A", createdAt="2023-06-01T00:00:00Z", title="a", updatedAt=T1)]
        remote = [make_item("A", createdAt="2023-07-01T00:00:00Z", title="b", updatedAt=T2)]

        merged = merge_work_items(local, remote).merged

        assert merged[0].created_at == "2023-06-01T00:00:00Z"

    def test_sort_index_and_parent_follow_winner(self, make_item: ItemFactory) -> None:
        """sortIndex and parentId follow the same later-wins rule."""
        local = [make_item("A", sortIndex=100, parentId="P1", updatedAt=T2)]
        remote = [make_item("A", sortIndex=500, parentId=None, updatedAt=T1)]

        merged = merge_work_items(local, remote).merged

        assert merged[0].sort_index == 100
        assert merged[0].parent_id == "P1"

    def test_marker_format(self, make_item: ItemFactory) -> None:
        """The conflict marker names the fields and both timestamps."""
        local = [make_item("A", title="Old", description="d1", updatedAt=T1)]
        remote = [make_item("A", title="New", description="d2", updatedAt=T2)]

        conflicts = merge_work_items(local, remote).conflicts

        assert conflicts[0] == (
            f"A: Conflicting fields [title, description] resolved using remote values "
            f"(remote: {T2}, local: {T1})"
        )

    def test_unknown_fields_from_newer_side(self, make_item: ItemFactory) -> None:
        """Unknown fields are taken from the newer record."""
        local = [make_item("A", title="a", effort="S", updatedAt=T1)]
        remote = [make_item("A", title="b", effort="L", updatedAt=T2)]

        merged = merge_work_items(local, remote).merged

        assert merged[0].to_wire()["effort"] == "L"


class TestSameTimestamp:
    """Equal updatedAt with different content."""

    def test_classified_as_same_timestamp(self, make_item: ItemFactory) -> None:
        """The conflict type and marker reflect equal timestamps."""
        local = [make_item("A", title="Alpha")]
        remote = [make_item("A", title="Beta")]

        merged, conflicts, details = merge_work_items(local, remote)

        assert details[0].conflict_type == ConflictType.SAME_TIMESTAMP
        assert any("Same updatedAt" in c for c in conflicts)

    def test_resolution_is_commutative(self, make_item: ItemFactory) -> None:
        """merge(A, B) and merge(B, A) choose the identical record."""
        a = [
            make_item(
                "X",
                title="Alpha",
                description="",
                status="blocked",
                tags=["one"],
                assignee="bob",
                sortIndex=100,
            )
        ]
        b = [
            make_item(
                "X",
                title="Beta",
                description="filled in",
                status="open",
                tags=["two"],
                assignee="",
                sortIndex=200,
            )
        ]

        ab = merge_work_items(a, b).merged[0]
        ba = merge_work_items(b, a).merged[0]

        assert canonical_key(ab) == canonical_key(ba)
        assert ab.tags == ["one", "two"]

    def test_non_empty_beats_empty(self, make_item: ItemFactory) -> None:
        """A value present on one side only is kept."""
        local = [make_item("A", assignee="")]
        remote = [make_item("A", assignee="carol")]

        merged, _, details = merge_work_items(local, remote)

        assert merged[0].assignee == "carol"
        field = details[0].fields[0]
        assert field.chosen_source == ChosenSource.REMOTE
        assert field.reason == "remote has value, local is empty"

    def test_lexicographic_tie_break(self, make_item: ItemFactory) -> None:
        """Two non-empty values resolve to the greater one on both sides."""
        local = [make_item("A", title="Beta")]
        remote = [make_item("A", title="Alpha")]

        merged, _, details = merge_work_items(local, remote)

        assert merged[0].title == "Beta"
        assert details[0].fields[0].chosen_source == ChosenSource.LOCAL

    def test_updated_at_not_bumped(self, make_item: ItemFactory) -> None:
        """The shared updatedAt is kept so both peers produce the same record."""
        local = [make_item("A", title="Alpha")]
        remote = [make_item("A", title="Beta")]

        merged = merge_work_items(local, remote).merged

        assert merged[0].updated_at == local[0].updated_at

    def test_same_instant_different_spelling(self, make_item: ItemFactory) -> None:
        """Timestamps naming the same instant count as equal."""
        local = [make_item("A", title="Alpha", updatedAt="2024-01-01T00:00:00Z")]
        remote = [make_item("A", title="Beta", updatedAt="2024-01-01T00:00:00.000+00:00")]

        _, _, details = merge_work_items(local, remote)

        assert details[0].conflict_type == ConflictType.SAME_TIMESTAMP


class TestScenario:
    """End-to-end merge scenario."""

    def test_add_and_update(self, make_item: ItemFactory) -> None:
        """Local [A(t5), B], remote [A(t7, new title), C] merges to {A', B, C}."""
        local = [
            make_item("A", title="Original", updatedAt="2024-01-05T00:00:00Z"),
            make_item("B"),
        ]
        remote = [
            make_item("A", title="Renamed", updatedAt="2024-01-07T00:00:00Z"),
            make_item("C"),
        ]

        merged, conflicts, details = merge_work_items(local, remote)

        by_id = _by_id(merged)
        assert set(by_id) == {"A", "B", "C"}
        assert by_id["A"].title == "Renamed"
        assert len(details) == 1
        assert details[0].item_id == "A"
        assert count_updated_items(conflicts) == 1


class TestComments:
    """Tests for merge_comments()."""

    def test_union_by_id(self, make_comment: Callable[..., Comment]) -> None:
        """Comments on one side only are carried over."""
        local = [make_comment("WI-1-C1")]
        remote = [make_comment("WI-1-C2")]

        merged, conflicts, details = merge_comments(local, remote)

        assert [c.id for c in merged] == ["WI-1-C1", "WI-1-C2"]
        assert conflicts == []
        assert details == []

    def test_identical_is_unchanged(self, make_comment: Callable[..., Comment]) -> None:
        """The same comment on both sides produces no conflict."""
        comment = make_comment("WI-1-C1")

        merged, conflicts, _ = merge_comments([comment], [comment])

        assert merged == [comment]
        assert conflicts == []

    def test_edited_comment_resolves_deterministically(
        self, make_comment: Callable[..., Comment]
    ) -> None:
        """Differing versions of a comment pick the same winner in either order."""
        a = make_comment("WI-1-C1", comment="first draft")
        b = make_comment("WI-1-C1", comment="second draft")

        ab, ab_conflicts, ab_details = merge_comments([a], [b])
        ba, _, _ = merge_comments([b], [a])

        assert ab == ba
        assert ab[0].comment == "second draft"
        assert "Same comment id but different content" in ab_conflicts[0]
        assert ab_details[0].conflict_type == ConflictType.SAME_TIMESTAMP
        assert [f.field for f in ab_details[0].fields] == ["comment"]


class TestCountUpdatedItems:
    """Tests for count_updated_items()."""

    def test_counts_distinct_ids(self) -> None:
        """Only update markers count, once per id."""
        conflicts = [
            "A: Conflicting fields [title] resolved using remote values (remote: t2, local: t1)",
            "A: Merged fields [tags (union)]",
            "B: Same updatedAt but different content - merged deterministically",
            "B: Merged fields [title (tie-break: local)]",
            "C: Merged fields [tags (union)]",
        ]

        assert count_updated_items(conflicts) == 2
