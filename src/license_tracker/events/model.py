"""Event model for instance lifecycle, configuration and system events.

Every audit log entry relevant to VM history is turned into a single
immutable InstanceEvent. The concrete kind of event is carried by the
EventKind discriminator, and kind-specific data lives in optional payload
fields (machine_type, server_id, ...). Consumers match on kind and ignore
whatever they do not care about.

Whether an event starts or terminates an instance is derived from its kind
(and, for bulk inserts, from the operation markers). Failed operations never
change instance state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from license_tracker.locators import (
    ImageFamilyViewLocator,
    ImageLocator,
    InstanceLocator,
    MachineTypeLocator,
    NodeTypeLocator,
)


class EventCategory(str, Enum):
    """Broad classification of an event."""

    LIFECYCLE = "lifecycle"
    CONFIGURATION = "configuration"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class EventKind(str, Enum):
    """Concrete kind of an instance event."""

    # Lifecycle (activity log)
    INSERT_INSTANCE = "insert_instance"
    BULK_INSERT_INSTANCE = "bulk_insert_instance"
    DELETE_INSTANCE = "delete_instance"
    START_INSTANCE = "start_instance"
    START_WITH_ENCRYPTION_KEY = "start_with_encryption_key"
    STOP_INSTANCE = "stop_instance"
    RESET_INSTANCE = "reset_instance"
    SUSPEND_INSTANCE = "suspend_instance"
    RESUME_INSTANCE = "resume_instance"

    # Configuration (activity log)
    SET_MACHINE_TYPE = "set_machine_type"
    SET_SCHEDULING = "set_scheduling"
    SET_LABELS = "set_labels"
    UPDATE_INSTANCE = "update_instance"

    # System events
    AUTOMATIC_RESTART = "automatic_restart"
    GUEST_TERMINATE = "guest_terminate"
    HOST_ERROR = "host_error"
    INSTANCE_MANAGER_HALT_FOR_RESTART = "instance_manager_halt_for_restart"
    INSTANCE_PREEMPTED = "instance_preempted"
    INSTANCE_RESET = "instance_reset"
    MIGRATE_ON_HOST_MAINTENANCE = "migrate_on_host_maintenance"
    NOTIFY_INSTANCE_LOCATION = "notify_instance_location"
    RECREATE_INSTANCE = "recreate_instance"
    TERMINATE_ON_HOST_MAINTENANCE = "terminate_on_host_maintenance"
    GENERIC_SYSTEM = "generic_system"

    UNKNOWN = "unknown"


LIFECYCLE_KINDS = frozenset(
    {
        EventKind.INSERT_INSTANCE,
        EventKind.BULK_INSERT_INSTANCE,
        EventKind.DELETE_INSTANCE,
        EventKind.START_INSTANCE,
        EventKind.START_WITH_ENCRYPTION_KEY,
        EventKind.STOP_INSTANCE,
        EventKind.RESET_INSTANCE,
        EventKind.SUSPEND_INSTANCE,
        EventKind.RESUME_INSTANCE,
    }
)

CONFIGURATION_KINDS = frozenset(
    {
        EventKind.SET_MACHINE_TYPE,
        EventKind.SET_SCHEDULING,
        EventKind.SET_LABELS,
        EventKind.UPDATE_INSTANCE,
    }
)

# Kinds whose successful completion means the instance began running.
STARTING_KINDS = frozenset(
    {
        EventKind.INSERT_INSTANCE,
        EventKind.START_INSTANCE,
        EventKind.START_WITH_ENCRYPTION_KEY,
        EventKind.RESUME_INSTANCE,
        EventKind.AUTOMATIC_RESTART,
    }
)

# Kinds whose successful completion means the instance stopped running.
TERMINATING_KINDS = frozenset(
    {
        EventKind.DELETE_INSTANCE,
        EventKind.STOP_INSTANCE,
        EventKind.SUSPEND_INSTANCE,
        EventKind.GUEST_TERMINATE,
        EventKind.HOST_ERROR,
        EventKind.INSTANCE_MANAGER_HALT_FOR_RESTART,
        EventKind.INSTANCE_PREEMPTED,
        EventKind.TERMINATE_ON_HOST_MAINTENANCE,
    }
)


@dataclass(frozen=True)
class SchedulingPolicy:
    """Maintenance behaviour and CPU overcommit settings of an instance.

    Attributes:
        maintenance_policy: MIGRATE or TERMINATE.
        min_node_cpus: Minimum number of vCPUs allocated on a sole-tenant
            node when CPU overcommit is enabled, None otherwise.
    """

    maintenance_policy: str
    min_node_cpus: int | None = None


class InstanceEvent(BaseModel):
    """Immutable event concerning a single VM instance.

    Attributes:
        kind: Concrete kind of the event.
        method_name: Audit log method name the event was created from.
        timestamp: When the event occurred (UTC).
        instance_id: Numeric instance ID. 0 if the entry does not identify
            an instance; such events are discarded by the history builders.
        instance_reference: Project, zone and name of the instance, if the
            entry reveals them.
        severity: Log severity (NOTICE, INFO, ERROR, ...).
        is_error: True if the entry records a failed operation.
        is_first: True for the first entry of a long-running operation.
        is_last: True for the last entry of a long-running operation.
        machine_type: New machine type (insert, setMachineType, update).
        scheduling_policy: New scheduling policy (insert, setScheduling, update).
        labels: New labels (insert, setLabels, update).
        image: Boot image (insert).
        server_id: Sole-tenant server the instance was placed on
            (NotifyInstanceLocation).
        node_type: Sole-tenant node type (NotifyInstanceLocation). Absent in
            entries emitted before August 2020.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind = Field(..., description="Concrete kind of the event")
    method_name: str | None = Field(default=None, description="Audit log method name")
    timestamp: datetime = Field(..., description="When the event occurred (UTC)")
    instance_id: int = Field(default=0, ge=0, description="Numeric instance ID, 0 if unknown")
    instance_reference: InstanceLocator | None = Field(
        default=None, description="Project, zone and name of the instance"
    )
    severity: str | None = Field(default=None, description="Log severity")
    is_error: bool = Field(default=False, description="True if the operation failed")
    is_first: bool = Field(default=False, description="First entry of an operation")
    is_last: bool = Field(default=False, description="Last entry of an operation")

    machine_type: MachineTypeLocator | None = None
    scheduling_policy: SchedulingPolicy | None = None
    labels: dict[str, str] | None = None
    image: ImageLocator | ImageFamilyViewLocator | None = None
    server_id: str | None = None
    node_type: NodeTypeLocator | None = None

    @property
    def category(self) -> EventCategory:
        if self.kind in LIFECYCLE_KINDS:
            return EventCategory.LIFECYCLE
        if self.kind in CONFIGURATION_KINDS:
            return EventCategory.CONFIGURATION
        if self.kind == EventKind.UNKNOWN:
            return EventCategory.UNKNOWN
        return EventCategory.SYSTEM

    @property
    def is_starting_instance(self) -> bool:
        """True if this event caused the instance to start running."""
        if self.is_error:
            return False
        if self.kind == EventKind.BULK_INSERT_INSTANCE:
            # The initial bulk-insert entry carries no instance ID; each
            # created instance gets its own first-and-last entry.
            return self.is_first and self.is_last
        return self.kind in STARTING_KINDS

    @property
    def is_terminating_instance(self) -> bool:
        """True if this event caused the instance to stop running."""
        return not self.is_error and self.kind in TERMINATING_KINDS
