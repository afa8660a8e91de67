"""Placement history reconstruction for a single instance.

A placement is a time interval during which an instance ran either on the
shared fleet or on a specific sole-tenant server. The PlacementHistoryBuilder
reconstructs the list of placements of one instance by replaying its events
in reverse chronological order:

- A stop event does not create a placement. It records the point in time
  that the chronologically preceding placement must end at.
- A start event creates a fleet placement lasting until the next known stop,
  or until the next known placement begins.
- A NotifyInstanceLocation event creates a sole-tenant placement in the
  same way.

Placements that are less than a minute apart are merged unless they name
different servers. Because events are replayed newest first, placements are
prepended, so the list stays sorted by start date.

Replaying a stream that is not newest-first produces wrong histories; the
builder asserts the ordering.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from license_tracker.events.model import EventKind, InstanceEvent
from license_tracker.locators import InstanceLocator, NodeTypeLocator
from license_tracker.observability import get_logger

logger = get_logger(__name__)

# Placements closer than this are considered contiguous.
ADJACENCY_THRESHOLD = timedelta(seconds=60)


class Tenancy(str, Enum):
    """Where an instance runs."""

    UNKNOWN = "unknown"
    FLEET = "fleet"
    SOLE_TENANT = "sole_tenant"


class InstanceState(str, Enum):
    """Lifecycle state of an instance as of the end of the analysis window."""

    RUNNING = "running"
    TERMINATED = "terminated"
    DELETED = "deleted"


class PlacementHistoryState(str, Enum):
    """How confident the reconstruction of a placement history is."""

    COMPLETE = "complete"
    MISSING_TENANCY = "missing_tenancy"
    MISSING_NAME = "missing_name"
    MISSING_IMAGE = "missing_image"
    MISSING_STOP_EVENT = "missing_stop_event"


@dataclass(frozen=True)
class Placement:
    """An interval during which an instance ran on the fleet or a sole-tenant server.

    Attributes:
        tenancy: FLEET, SOLE_TENANT, or UNKNOWN if the instance's placement
            could not be determined.
        server_id: Sole-tenant server, None for other tenancies.
        node_type: Sole-tenant node type, None for other tenancies or when
            the placement event did not reveal it.
        start: Start of the interval (inclusive).
        end: End of the interval.
    """

    tenancy: Tenancy
    server_id: str | None
    node_type: NodeTypeLocator | None
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        assert self.start <= self.end, "Placement must not end before it starts"

    @classmethod
    def fleet(cls, start: datetime, end: datetime) -> Placement:
        return cls(Tenancy.FLEET, None, None, start, end)

    @classmethod
    def sole_tenant(
        cls,
        server_id: str,
        node_type: NodeTypeLocator | None,
        start: datetime,
        end: datetime,
    ) -> Placement:
        return cls(Tenancy.SOLE_TENANT, server_id, node_type, start, end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def is_adjacent(self, subsequent: Placement) -> bool:
        """Check whether a subsequent placement continues this one.

        Two placements are adjacent if the gap between them is below the
        adjacency threshold and they do not name two different servers.

        Args:
            subsequent: A placement starting at or after this one's end.

        Returns:
            True if both placements can be merged into one.
        """
        if abs(subsequent.start - self.end) >= ADJACENCY_THRESHOLD:
            return False

        if self.server_id is not None and subsequent.server_id is not None:
            return self.server_id == subsequent.server_id

        # At least one placement lacks server information, so assume
        # it is the same server.
        return True

    def merge(self, subsequent: Placement) -> Placement:
        """Merge an adjacent subsequent placement into a single placement.

        Sole-tenancy wins over fleet tenancy, and missing server or node
        information is taken from whichever placement has it.

        Args:
            subsequent: An adjacent placement starting after this one.

        Returns:
            A placement spanning both.
        """
        assert self.is_adjacent(subsequent)

        if Tenancy.SOLE_TENANT in (self.tenancy, subsequent.tenancy):
            tenancy = Tenancy.SOLE_TENANT
        else:
            tenancy = Tenancy.FLEET

        return Placement(
            tenancy=tenancy,
            server_id=self.server_id or subsequent.server_id,
            node_type=self.node_type or subsequent.node_type,
            start=self.start,
            end=subsequent.end,
        )

    def __str__(self) -> str:
        return f"{self.start.isoformat()} - {self.end.isoformat()} on {self.server_id or 'fleet'}"


@dataclass(frozen=True)
class PlacementHistory:
    """Reconstructed placements of one instance, sorted by start date."""

    instance_id: int
    reference: InstanceLocator | None
    state: PlacementHistoryState
    placements: tuple[Placement, ...]

    def __post_init__(self) -> None:
        assert all(
            earlier.end <= later.start
            for earlier, later in zip(self.placements, self.placements[1:])
        ), "Placements must be sorted and must not overlap"

    @property
    def tenancy(self) -> Tenancy:
        """Tenancy of the most recent placement."""
        return self.placements[-1].tenancy if self.placements else Tenancy.UNKNOWN


class PlacementHistoryBuilder:
    """Reconstructs the placement history of a single instance.

    Use for_existing_instance() or for_deleted_instance() to create a
    builder, feed it events newest first through process_event(), then call
    build().
    """

    def __init__(
        self,
        instance_id: int,
        reference: InstanceLocator | None,
        state: InstanceState,
        last_seen: datetime | None,
        tenancy: Tenancy,
        server_id: str | None,
        node_type: NodeTypeLocator | None,
    ) -> None:
        """Initialize the builder.

        Args:
            instance_id: Numeric ID of the instance. Must not be 0.
            reference: Locator of the instance, if known.
            state: State of the instance at last_seen.
            last_seen: When the instance was last observed in this state.
                Required unless the instance is deleted.
            tenancy: Current tenancy of a running instance.
            server_id: Current sole-tenant server of a running instance.
            node_type: Current sole-tenant node type of a running instance.

        Raises:
            ValueError: If instance_id is 0.
        """
        if instance_id == 0:
            raise ValueError("Instance ID cannot be 0")
        assert state == InstanceState.DELETED or last_seen is not None

        self.instance_id = instance_id
        self.reference = reference
        self.state = state

        # Placements sorted by start date; built by prepending.
        self._placements: list[Placement] = []

        # Most recent stop observed while scanning backwards, i.e. the stop
        # that chronologically follows the current position.
        self._last_stopped_on: datetime | None = last_seen

        # Timestamp of the last event processed, None before the first one.
        self._last_event_date: datetime | None = None

        self._dropped_placements = 0

        if state == InstanceState.RUNNING:
            # Zero-width placeholder, extended backwards by later events or
            # widened to the start of the report window by build().
            assert last_seen is not None
            if tenancy != Tenancy.SOLE_TENANT:
                server_id, node_type = None, None
            self._add_placement(Placement(tenancy, server_id, node_type, last_seen, last_seen))

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def for_existing_instance(
        cls,
        instance_id: int,
        reference: InstanceLocator,
        state: InstanceState,
        last_seen: datetime,
        tenancy: Tenancy,
        server_id: str | None,
        node_type: NodeTypeLocator | None,
    ) -> PlacementHistoryBuilder:
        """Create a builder for an instance that still exists."""
        assert state != InstanceState.DELETED
        assert tenancy == Tenancy.SOLE_TENANT or server_id is None

        return cls(instance_id, reference, state, last_seen, tenancy, server_id, node_type)

    @classmethod
    def for_deleted_instance(cls, instance_id: int) -> PlacementHistoryBuilder:
        """Create a builder for an instance that no longer exists."""
        return cls(instance_id, None, InstanceState.DELETED, None, Tenancy.UNKNOWN, None, None)

    # -------------------------------------------------------------------------
    # Placement tracking
    # -------------------------------------------------------------------------

    @property
    def placements(self) -> tuple[Placement, ...]:
        return tuple(self._placements)

    @property
    def tenancy(self) -> Tenancy:
        """Tenancy of the earliest placement found so far."""
        return self._placements[0].tenancy if self._placements else Tenancy.UNKNOWN

    def _add_placement(self, placement: Placement) -> None:
        if self._placements and placement.is_adjacent(self._placements[0]):
            # Same placement, possibly reported twice; merge.
            self._placements[0] = placement.merge(self._placements[0])
        else:
            self._placements.insert(0, placement)

    def _set_reference(self, reference: InstanceLocator | None) -> None:
        if self.reference is None and reference is not None:
            self.reference = reference

    def _advance(self, date: datetime) -> None:
        assert self._last_event_date is None or date <= self._last_event_date, (
            "Events must be processed in descending timestamp order"
        )
        self._last_event_date = date

    def add_placement(
        self,
        tenancy: Tenancy,
        server_id: str | None,
        node_type: NodeTypeLocator | None,
        date: datetime,
    ) -> None:
        """Register a placement that began at the given date.

        The placement lasts until the next known stop or the next known
        placement, whichever comes first. If neither is known, the instance
        was placed but never stopped even though it is not running anymore;
        the placement is dropped with a warning.

        Args:
            tenancy: Tenancy of the placement.
            server_id: Sole-tenant server, ignored for other tenancies.
            node_type: Sole-tenant node type, ignored for other tenancies.
            date: When the placement began.
        """
        self._advance(date)

        if not self._placements:
            if self._last_stopped_on is None:
                logger.warning(
                    "Instance was placed, but never stopped, and yet is not running anymore. "
                    "Flagging as defunct",
                    instance_id=self.instance_id,
                    placed_on=date.isoformat(),
                )
                self._dropped_placements += 1
                return
            placed_until = self._last_stopped_on
        elif self._last_stopped_on is not None:
            placed_until = min(self._last_stopped_on, self._placements[0].start)
        else:
            placed_until = self._placements[0].start

        if tenancy == Tenancy.SOLE_TENANT:
            assert server_id is not None
            placement = Placement.sole_tenant(server_id, node_type, date, placed_until)
        else:
            placement = Placement.fleet(date, placed_until)

        self._add_placement(placement)

    def on_start(self, date: datetime, reference: InstanceLocator | None) -> None:
        """Handle an event that started the instance."""
        self._set_reference(reference)
        self.add_placement(Tenancy.FLEET, None, None, date)

    def on_stop(self, date: datetime, reference: InstanceLocator | None) -> None:
        """Handle an event that stopped the instance."""
        self._advance(date)
        self._last_stopped_on = date
        self._set_reference(reference)

    def on_set_placement(
        self,
        server_id: str,
        node_type: NodeTypeLocator | None,
        date: datetime,
    ) -> None:
        """Handle a sole-tenant placement notification.

        node_type is None for notifications emitted before August 2020.
        """
        self.add_placement(Tenancy.SOLE_TENANT, server_id, node_type, date)

    def process_event(self, event: InstanceEvent) -> None:
        """Apply an event to the history. Irrelevant events are ignored."""
        if event.kind == EventKind.NOTIFY_INSTANCE_LOCATION and event.server_id is not None:
            self.on_set_placement(event.server_id, event.node_type, event.timestamp)
        elif event.is_starting_instance:
            self.on_start(event.timestamp, event.instance_reference)
        elif event.is_terminating_instance:
            self.on_stop(event.timestamp, event.instance_reference)

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def _state(self, placements: list[Placement], dropped: int) -> PlacementHistoryState:
        if self.reference is None:
            return PlacementHistoryState.MISSING_NAME
        if any(p.tenancy == Tenancy.UNKNOWN for p in placements):
            return PlacementHistoryState.MISSING_TENANCY
        if dropped:
            return PlacementHistoryState.MISSING_STOP_EVENT
        return PlacementHistoryState.COMPLETE

    def build(self, report_start_date: datetime) -> PlacementHistory:
        """Finalize the history.

        Placements that still have no duration at this point stem from an
        incomplete audit log, such as a running instance whose restart after
        the last stop was never logged. They are dropped with a warning and
        the history is flagged as MISSING_STOP_EVENT.

        Args:
            report_start_date: Start of the analysis window. Instances that
                were already running (or stopped without a known start) at
                this point are assumed to have been placed at this date.

        Returns:
            The placement history.
        """
        placements = list(self._placements)
        last_stopped_on = self._last_stopped_on

        if (
            len(placements) == 1
            and placements[0].start == last_stopped_on
            and placements[0].end == last_stopped_on
        ):
            # Running instance without a start event: it must have been
            # started before the window.
            placements = [replace(placements[0], start=report_start_date)]
        elif (
            self._last_event_date is not None
            and last_stopped_on is not None
            and (not placements or last_stopped_on < placements[0].start)
        ):
            # Stopped, but started before the window. Where it ran is unknown.
            placements.insert(
                0,
                Placement(Tenancy.UNKNOWN, None, None, report_start_date, last_stopped_on),
            )

        zero_width = [p for p in placements if p.start == p.end]
        if zero_width:
            logger.warning(
                "Dropping placements without duration, audit log is incomplete",
                instance_id=self.instance_id,
                placements=[str(p) for p in zero_width],
            )
            placements = [p for p in placements if p.start != p.end]

        return PlacementHistory(
            instance_id=self.instance_id,
            reference=self.reference,
            state=self._state(placements, self._dropped_placements + len(zero_width)),
            placements=tuple(placements),
        )
