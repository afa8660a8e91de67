"""History of a set of instances over an analysis window.

The InstanceSetHistoryBuilder is the entry point of history reconstruction:

1. Seed it with the instances that currently exist (add_existing_instances).
2. Feed it audit log events, newest first (process).
3. Call build() to obtain the InstanceSetHistory.

Events for instances that were never added are attributed to instances that
have since been deleted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from license_tracker.events.factory import EVENT_METHODS
from license_tracker.events.model import InstanceEvent, SchedulingPolicy
from license_tracker.history.configuration import ConfigurationHistory, ImageReference
from license_tracker.history.instance import InstanceHistoryBuilder
from license_tracker.history.placement import InstanceState, PlacementHistory, Tenancy
from license_tracker.inventory import Disk, Instance, SoleTenantNode
from license_tracker.locators import (
    InstanceLocator,
    MachineTypeLocator,
    NodeTypeLocator,
    image_from_string,
)
from license_tracker.observability import get_logger

logger = get_logger(__name__)


class EventOrder(str, Enum):
    """Order in which an event processor expects to receive events."""

    OLDEST_FIRST = "oldest_first"
    NEWEST_FIRST = "newest_first"


@dataclass(frozen=True)
class InstanceSetHistory:
    """Placement and configuration histories of all instances in a window."""

    start_date: datetime
    end_date: datetime
    placement_histories: tuple[PlacementHistory, ...]
    machine_type_histories: dict[int, ConfigurationHistory[MachineTypeLocator]] = field(
        default_factory=dict
    )
    scheduling_policy_histories: dict[int, ConfigurationHistory[SchedulingPolicy]] = field(
        default_factory=dict
    )
    image_histories: dict[int, ConfigurationHistory[ImageReference]] = field(default_factory=dict)
    label_histories: dict[int, ConfigurationHistory[dict[str, str]]] = field(default_factory=dict)


def _is_utc(date: datetime) -> bool:
    return date.tzinfo is not None and date.utcoffset() == timedelta(0)


class InstanceSetHistoryBuilder:
    """Builds the history of all instances seen in an analysis window.

    Args:
        start_date: Start of the analysis window (UTC).
        end_date: End of the analysis window (UTC), typically now.

    Raises:
        ValueError: If either date is not in UTC, or the dates are reversed.
    """

    expected_order = EventOrder.NEWEST_FIRST

    # Failed operations carry no state change; don't bother fetching them.
    supported_severities: tuple[str, ...] = ("NOTICE", "INFO")

    supported_methods: tuple[str, ...] = tuple(EVENT_METHODS)

    def __init__(self, start_date: datetime, end_date: datetime) -> None:
        if not _is_utc(start_date) or not _is_utc(end_date):
            raise ValueError("Start/end date must be in UTC time")
        if start_date > end_date:
            raise ValueError("Start date and end date are reversed")

        self.start_date = start_date
        self.end_date = end_date
        self._instances: dict[int, InstanceHistoryBuilder] = {}

    @property
    def instance_ids(self) -> list[int]:
        return list(self._instances)

    def get_instance_history_builder(self, instance_id: int) -> InstanceHistoryBuilder:
        """Return the builder for an instance, creating one for a deleted instance if needed."""
        builder = self._instances.get(instance_id)
        if builder is None:
            builder = InstanceHistoryBuilder.for_deleted_instance(instance_id)
            self._instances[instance_id] = builder
        return builder

    # -------------------------------------------------------------------------
    # Seeding with existing instances
    # -------------------------------------------------------------------------

    def add_existing_instance(
        self,
        instance_id: int,
        reference: InstanceLocator,
        image: ImageReference | None,
        machine_type: MachineTypeLocator | None,
        scheduling_policy: SchedulingPolicy | None,
        labels: dict[str, str] | None,
        state: InstanceState,
        last_seen: datetime,
        tenancy: Tenancy,
        server_id: str | None,
        node_type: NodeTypeLocator | None,
    ) -> None:
        """Register an instance that exists at the end of the window."""
        assert instance_id not in self._instances, "Instance added twice"
        assert last_seen <= self.end_date

        self._instances[instance_id] = InstanceHistoryBuilder.for_existing_instance(
            instance_id,
            reference,
            image,
            machine_type,
            scheduling_policy,
            labels,
            state,
            last_seen,
            tenancy,
            server_id,
            node_type,
        )

    def add_existing_instances(
        self,
        instances: Iterable[Instance],
        nodes: Iterable[SoleTenantNode],
        disks: Iterable[Disk],
        project_id: str,
    ) -> None:
        """Register all instances of a project from an inventory snapshot.

        The instance listing does not reveal source images, so boot disks are
        joined against the disk listing. Sole-tenant instances are joined
        against the node listing to determine their server.

        Args:
            instances: Instances of the project.
            nodes: Sole-tenant nodes, possibly spanning multiple projects.
            disks: Disks of the project.
            project_id: Project the instances and disks belong to.
        """
        node_list = list(nodes)
        source_images = {disk.self_link: disk.source_image for disk in disks if disk.source_image}

        for instance in instances:
            reference = instance.locator(project_id)

            image: ImageReference | None = None
            boot_disk = instance.boot_disk
            if boot_disk is not None and boot_disk.source in source_images:
                try:
                    image = image_from_string(source_images[boot_disk.source])
                except ValueError:
                    logger.warning(
                        "Ignoring malformed source image",
                        instance=str(reference),
                        source_image=source_images[boot_disk.source],
                    )

            is_running = instance.status == "RUNNING"

            server_id: str | None = None
            node_type: NodeTypeLocator | None = None
            if instance.is_sole_tenant:
                tenancy = Tenancy.SOLE_TENANT
                node = next((n for n in node_list if n.hosts(reference)), None)
                if node is not None:
                    server_id = node.server_id
                    node_type = node.node_type_locator()
                elif is_running:
                    logger.warning(
                        "Could not identify node hosting sole-tenant instance",
                        instance=str(reference),
                    )
            else:
                tenancy = Tenancy.FLEET

            machine_type: MachineTypeLocator | None = None
            if instance.machine_type:
                try:
                    machine_type = MachineTypeLocator.from_string(instance.machine_type)
                except ValueError:
                    logger.warning("Ignoring malformed machine type", machine_type=instance.machine_type)

            scheduling_policy = None
            if instance.scheduling.on_host_maintenance:
                scheduling_policy = SchedulingPolicy(
                    maintenance_policy=instance.scheduling.on_host_maintenance,
                    min_node_cpus=instance.scheduling.min_node_cpus,
                )

            self.add_existing_instance(
                instance.id,
                reference,
                image,
                machine_type,
                scheduling_policy,
                dict(instance.labels) if instance.labels is not None else None,
                InstanceState.RUNNING if is_running else InstanceState.TERMINATED,
                self.end_date,
                tenancy,
                server_id,
                node_type,
            )

    # -------------------------------------------------------------------------
    # Event processing
    # -------------------------------------------------------------------------

    def process(self, event: InstanceEvent) -> None:
        """Route an event to the builder of the instance it concerns.

        Events must be delivered newest first. Events that do not identify an
        instance, or that postdate the window, are dropped.
        """
        if event.instance_id == 0:
            # Some system events (e.g. recreate) do not carry an instance ID.
            return

        if event.timestamp > self.end_date:
            logger.debug(
                "Ignoring event after end of analysis window",
                instance_id=event.instance_id,
                timestamp=event.timestamp.isoformat(),
            )
            return

        self.get_instance_history_builder(event.instance_id).process_event(event)

    def build(self) -> InstanceSetHistory:
        builders = list(self._instances.values())
        return InstanceSetHistory(
            start_date=self.start_date,
            end_date=self.end_date,
            placement_histories=tuple(
                b.build_placement_history(self.start_date) for b in builders
            ),
            machine_type_histories={b.instance_id: b.build_machine_type_history() for b in builders},
            scheduling_policy_histories={
                b.instance_id: b.build_scheduling_policy_history() for b in builders
            },
            image_histories={b.instance_id: b.build_image_history() for b in builders},
            label_histories={b.instance_id: b.build_labels_history() for b in builders},
        )
