"""Per-instance history builder.

Fans every event out to the instance's placement builder and to one
configuration builder per tracked dimension. Each sub-builder decides on its
own whether an event is relevant.
"""

from __future__ import annotations

from datetime import datetime

from license_tracker.events.model import InstanceEvent, SchedulingPolicy
from license_tracker.history.configuration import (
    ConfigurationHistory,
    ImageHistoryBuilder,
    ImageReference,
    LabelsHistoryBuilder,
    MachineTypeHistoryBuilder,
    SchedulingPolicyHistoryBuilder,
)
from license_tracker.history.placement import (
    InstanceState,
    PlacementHistory,
    PlacementHistoryBuilder,
    PlacementHistoryState,
    Tenancy,
)
from license_tracker.locators import InstanceLocator, MachineTypeLocator, NodeTypeLocator


class InstanceHistoryBuilder:
    """Builds the placement and configuration histories of one instance."""

    def __init__(
        self,
        placement: PlacementHistoryBuilder,
        machine_type: MachineTypeHistoryBuilder,
        scheduling_policy: SchedulingPolicyHistoryBuilder,
        image: ImageHistoryBuilder,
        labels: LabelsHistoryBuilder,
    ) -> None:
        self.placement = placement
        self.machine_type = machine_type
        self.scheduling_policy = scheduling_policy
        self.image = image
        self.labels = labels

    @property
    def instance_id(self) -> int:
        return self.placement.instance_id

    def process_event(self, event: InstanceEvent) -> None:
        self.placement.process_event(event)
        self.machine_type.process_event(event)
        self.scheduling_policy.process_event(event)
        self.image.process_event(event)
        self.labels.process_event(event)

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    def build_placement_history(self, report_start_date: datetime) -> PlacementHistory:
        """Build the placement history, flagging instances without a known image."""
        history = self.placement.build(report_start_date)
        if history.state == PlacementHistoryState.COMPLETE and not self.build_image_history().all_values:
            return PlacementHistory(
                instance_id=history.instance_id,
                reference=history.reference,
                state=PlacementHistoryState.MISSING_IMAGE,
                placements=history.placements,
            )
        return history

    def build_machine_type_history(self) -> ConfigurationHistory[MachineTypeLocator]:
        return self.machine_type.build()

    def build_scheduling_policy_history(self) -> ConfigurationHistory[SchedulingPolicy]:
        return self.scheduling_policy.build()

    def build_image_history(self) -> ConfigurationHistory[ImageReference]:
        return self.image.build()

    def build_labels_history(self) -> ConfigurationHistory[dict[str, str]]:
        return self.labels.build()

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @classmethod
    def for_existing_instance(
        cls,
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
    ) -> InstanceHistoryBuilder:
        """Create a builder for an instance that still exists.

        Args:
            instance_id: Numeric instance ID.
            reference: Project, zone and name of the instance.
            image: Current boot image, if known.
            machine_type: Current machine type.
            scheduling_policy: Current scheduling policy.
            labels: Current labels.
            state: RUNNING or TERMINATED.
            last_seen: When the instance was observed in this state.
            tenancy: FLEET or SOLE_TENANT.
            server_id: Sole-tenant server, if any.
            node_type: Sole-tenant node type, if any.

        Returns:
            The builder.
        """
        return cls(
            PlacementHistoryBuilder.for_existing_instance(
                instance_id,
                reference,
                state,
                last_seen,
                tenancy,
                server_id,
                node_type,
            ),
            MachineTypeHistoryBuilder(instance_id, machine_type),
            SchedulingPolicyHistoryBuilder(instance_id, scheduling_policy),
            ImageHistoryBuilder(instance_id, image),
            LabelsHistoryBuilder(instance_id, labels),
        )

    @classmethod
    def for_deleted_instance(cls, instance_id: int) -> InstanceHistoryBuilder:
        """Create a builder for an instance that no longer exists."""
        return cls(
            PlacementHistoryBuilder.for_deleted_instance(instance_id),
            MachineTypeHistoryBuilder(instance_id, None),
            SchedulingPolicyHistoryBuilder(instance_id, None),
            ImageHistoryBuilder(instance_id, None),
            LabelsHistoryBuilder(instance_id, None),
        )
