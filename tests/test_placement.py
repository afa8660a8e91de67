"""Tests for Placement adjacency and merging, and PlacementHistory invariants."""

from datetime import UTC, datetime, timedelta

import pytest

from license_tracker.history.placement import (
    Placement,
    PlacementHistory,
    PlacementHistoryState,
    Tenancy,
)
from license_tracker.locators import NodeTypeLocator

NODE_TYPE = NodeTypeLocator("project-1", "us-central1-a", "c2-node-60-240")

TEN = datetime(2020, 1, 1, 10, 0, 0, tzinfo=UTC)
ELEVEN = datetime(2020, 1, 1, 11, 0, 0, tzinfo=UTC)
NOON = datetime(2020, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_placement(server_id: str | None, start: datetime, end: datetime) -> Placement:
    if server_id is None:
        return Placement.fleet(start, end)
    return Placement.sole_tenant(server_id, None, start, end)


# ---------------------------------------------------------------------------
# Adjacency
# ---------------------------------------------------------------------------


class TestIsAdjacent:
    """Tests for the 60 second adjacency threshold."""

    @pytest.mark.parametrize(
        ("first_server", "second_server", "gap_seconds", "expected"),
        [
            (None, None, 59, True),
            ("server-1", None, 59, True),
            (None, "server-1", 59, True),
            ("server-1", "server-1", 59, True),
            ("server-1", "server-2", 59, False),
            (None, None, 60, False),
            (None, None, 61, False),
            ("server-1", "server-1", 61, False),
            ("server-1", "server-2", 61, False),
        ],
    )
    def test_adjacency_boundary(
        self,
        first_server: str | None,
        second_server: str | None,
        gap_seconds: int,
        expected: bool,
    ) -> None:
        first = make_placement(first_server, TEN, ELEVEN)
        second = make_placement(second_server, ELEVEN + timedelta(seconds=gap_seconds), NOON)

        assert first.is_adjacent(second) is expected

    def test_overlapping_placements_are_adjacent(self) -> None:
        first = Placement.fleet(TEN, ELEVEN)
        second = Placement.fleet(ELEVEN - timedelta(seconds=30), NOON)

        assert first.is_adjacent(second)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


class TestMerge:
    """Tests for merging adjacent placements."""

    def test_merge_fleet_placements(self) -> None:
        merged = Placement.fleet(TEN, ELEVEN).merge(Placement.fleet(ELEVEN + timedelta(seconds=50), NOON))

        assert merged.start == TEN
        assert merged.end == NOON
        assert merged.tenancy == Tenancy.FLEET
        assert merged.server_id is None

    def test_merge_keeps_known_server_and_node_type(self) -> None:
        first = Placement.fleet(TEN, ELEVEN)
        second = Placement.sole_tenant("server-1", NODE_TYPE, ELEVEN + timedelta(seconds=50), NOON)

        merged = first.merge(second)

        assert merged.tenancy == Tenancy.SOLE_TENANT
        assert merged.server_id == "server-1"
        assert merged.node_type == NODE_TYPE
        assert merged.start == TEN
        assert merged.end == NOON

    def test_merge_backfills_node_type_from_earlier_placement(self) -> None:
        first = Placement.sole_tenant("server-1", NODE_TYPE, TEN, ELEVEN)
        second = Placement.sole_tenant("server-1", None, ELEVEN, NOON)

        assert first.merge(second).node_type == NODE_TYPE

    def test_merged_placement_is_never_zero_width(self) -> None:
        merged = Placement.fleet(TEN, ELEVEN).merge(Placement.fleet(ELEVEN, NOON))

        assert merged.start != merged.end
        assert merged.duration == timedelta(hours=2)

    def test_merge_rejects_non_adjacent_placements(self) -> None:
        with pytest.raises(AssertionError):
            Placement.fleet(TEN, ELEVEN).merge(Placement.fleet(ELEVEN + timedelta(minutes=5), NOON))

    def test_placement_cannot_end_before_it_starts(self) -> None:
        with pytest.raises(AssertionError):
            Placement.fleet(NOON, TEN)


# ---------------------------------------------------------------------------
# PlacementHistory
# ---------------------------------------------------------------------------


class TestPlacementHistory:
    """Tests for PlacementHistory ordering invariants."""

    def test_tenancy_is_that_of_latest_placement(self) -> None:
        history = PlacementHistory(
            instance_id=1,
            reference=None,
            state=PlacementHistoryState.MISSING_NAME,
            placements=(
                Placement.fleet(TEN, ELEVEN),
                Placement.sole_tenant("server-1", None, ELEVEN, NOON),
            ),
        )

        assert history.tenancy == Tenancy.SOLE_TENANT

    def test_empty_history_has_unknown_tenancy(self) -> None:
        history = PlacementHistory(1, None, PlacementHistoryState.MISSING_NAME, ())

        assert history.tenancy == Tenancy.UNKNOWN

    def test_overlapping_placements_are_rejected(self) -> None:
        with pytest.raises(AssertionError):
            PlacementHistory(
                instance_id=1,
                reference=None,
                state=PlacementHistoryState.COMPLETE,
                placements=(Placement.fleet(TEN, NOON), Placement.fleet(ELEVEN, NOON)),
            )
