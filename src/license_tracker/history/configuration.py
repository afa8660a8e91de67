"""Configuration histories for individual instances.

A configuration history tracks one dimension of an instance's configuration
(machine type, scheduling policy, boot image or labels) over time. It holds
the instance's current value, if the instance still exists, and the list of
observed changes, newest first.

Builders consume the same newest-first event stream as the placement
builder. Each builder only reacts to the event kinds that can change its
dimension and ignores everything else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from license_tracker.events.model import EventKind, InstanceEvent, SchedulingPolicy
from license_tracker.locators import ImageFamilyViewLocator, ImageLocator, MachineTypeLocator

T = TypeVar("T")

ImageReference = ImageLocator | ImageFamilyViewLocator


@dataclass(frozen=True)
class ConfigurationChange(Generic[T]):
    """A single observed change of a configuration value."""

    change_date: datetime
    new_value: T


@dataclass(frozen=True)
class ConfigurationHistory(Generic[T]):
    """Immutable history of one configuration dimension of an instance.

    Attributes:
        instance_id: The instance this history belongs to.
        current_value: The value as of now, None if the instance no longer
            exists or the value is unknown.
        changes: Observed changes, sorted by change_date descending.
    """

    instance_id: int
    current_value: T | None
    changes: tuple[ConfigurationChange[T], ...] = ()

    def get_historic_value(self, date: datetime) -> T | None:
        """Return the value that was in effect at a given point in time.

        Args:
            date: The point in time to query.

        Returns:
            The most recent change on or before date, the current value if
            no changes were observed, or None if date predates all changes.
        """
        if not self.changes:
            return self.current_value

        for change in self.changes:
            if change.change_date <= date:
                return change.new_value

        return None

    @property
    def all_values(self) -> list[T]:
        """All values this dimension has taken, newest change first."""
        values = [change.new_value for change in self.changes]
        if self.current_value is not None:
            values.append(self.current_value)
        return values


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class ConfigurationHistoryBuilder(ABC, Generic[T]):
    """Accumulates configuration changes of one dimension for one instance.

    Subclasses declare which event kinds are relevant and how to extract the
    value from an event.

    Args:
        instance_id: The instance whose history is built.
        current_value: The instance's current value, if known.
    """

    relevant_kinds: frozenset[EventKind] = frozenset()

    def __init__(self, instance_id: int, current_value: T | None) -> None:
        self.instance_id = instance_id
        self.current_value = current_value
        self._changes: list[ConfigurationChange[T]] = []

    @abstractmethod
    def extract_value(self, event: InstanceEvent) -> T | None:
        """Return this dimension's value carried by an event, if any."""

    def __iter__(self) -> Iterator[ConfigurationChange[T]]:
        return iter(self._changes)

    def add_change(self, date: datetime, value: T) -> None:
        """Record a change. Changes must be added newest first."""
        assert not self._changes or date <= self._changes[-1].change_date, (
            "Changes must be added in descending date order"
        )
        self._changes.append(ConfigurationChange(date, value))

    def process_event(self, event: InstanceEvent) -> None:
        """Record the change carried by an event, if it concerns this dimension.

        Failed operations and events without a value are ignored.
        """
        if event.kind not in self.relevant_kinds or event.is_error:
            return

        value = self.extract_value(event)
        if value is not None:
            self.add_change(event.timestamp, value)

    def build(self) -> ConfigurationHistory[T]:
        return ConfigurationHistory(
            instance_id=self.instance_id,
            current_value=self.current_value,
            changes=tuple(self._changes),
        )


class MachineTypeHistoryBuilder(ConfigurationHistoryBuilder[MachineTypeLocator]):
    relevant_kinds = frozenset(
        {EventKind.INSERT_INSTANCE, EventKind.SET_MACHINE_TYPE, EventKind.UPDATE_INSTANCE}
    )

    def extract_value(self, event: InstanceEvent) -> MachineTypeLocator | None:
        return event.machine_type


class SchedulingPolicyHistoryBuilder(ConfigurationHistoryBuilder[SchedulingPolicy]):
    relevant_kinds = frozenset(
        {EventKind.INSERT_INSTANCE, EventKind.SET_SCHEDULING, EventKind.UPDATE_INSTANCE}
    )

    def extract_value(self, event: InstanceEvent) -> SchedulingPolicy | None:
        return event.scheduling_policy


class LabelsHistoryBuilder(ConfigurationHistoryBuilder[dict[str, str]]):
    relevant_kinds = frozenset(
        {EventKind.INSERT_INSTANCE, EventKind.SET_LABELS, EventKind.UPDATE_INSTANCE}
    )

    def extract_value(self, event: InstanceEvent) -> dict[str, str] | None:
        return event.labels


class ImageHistoryBuilder(ConfigurationHistoryBuilder[ImageReference]):
    """Boot images can only be chosen when an instance is created."""

    relevant_kinds = frozenset({EventKind.INSERT_INSTANCE})

    def extract_value(self, event: InstanceEvent) -> ImageReference | None:
        return event.image
