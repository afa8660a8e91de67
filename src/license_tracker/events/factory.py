"""Conversion of raw audit log records into InstanceEvents.

EVENT_METHODS maps every supported audit log method name to its EventKind.
The event source uses the keys of this mapping to restrict which entries it
fetches at all; from_record() uses it to classify each entry and to extract
the kind-specific payload.

Records with an unsupported method name are not rejected: system events
become GENERIC_SYSTEM and everything else UNKNOWN, so that a stale method
list never breaks processing.
"""

from __future__ import annotations

from typing import Any

from license_tracker.events.model import EventKind, InstanceEvent, SchedulingPolicy
from license_tracker.events.records import LogRecord
from license_tracker.locators import (
    ImageFamilyViewLocator,
    ImageLocator,
    InstanceLocator,
    MachineTypeLocator,
    NodeTypeLocator,
    image_from_string,
)
from license_tracker.observability import get_logger

logger = get_logger(__name__)

EVENT_METHODS: dict[str, EventKind] = {
    # Lifecycle events
    "v1.compute.instances.delete": EventKind.DELETE_INSTANCE,
    "v1.compute.instances.insert": EventKind.INSERT_INSTANCE,
    "beta.compute.instances.insert": EventKind.INSERT_INSTANCE,
    "v1.compute.instances.bulkInsert": EventKind.BULK_INSERT_INSTANCE,
    "v1.compute.instances.start": EventKind.START_INSTANCE,
    "v1.compute.instances.startWithEncryptionKey": EventKind.START_WITH_ENCRYPTION_KEY,
    "beta.compute.instances.startWithEncryptionKey": EventKind.START_WITH_ENCRYPTION_KEY,
    "v1.compute.instances.stop": EventKind.STOP_INSTANCE,
    "beta.compute.instances.stop": EventKind.STOP_INSTANCE,
    "v1.compute.instances.reset": EventKind.RESET_INSTANCE,
    "v1.compute.instances.suspend": EventKind.SUSPEND_INSTANCE,
    "beta.compute.instances.suspend": EventKind.SUSPEND_INSTANCE,
    "alpha.compute.instances.suspend": EventKind.SUSPEND_INSTANCE,
    "v1.compute.instances.resume": EventKind.RESUME_INSTANCE,
    "beta.compute.instances.resume": EventKind.RESUME_INSTANCE,
    "alpha.compute.instances.resume": EventKind.RESUME_INSTANCE,
    # Configuration events
    "v1.compute.instances.setMachineType": EventKind.SET_MACHINE_TYPE,
    "v1.compute.instances.setScheduling": EventKind.SET_SCHEDULING,
    "beta.compute.instances.setScheduling": EventKind.SET_SCHEDULING,
    "v1.compute.instances.setLabels": EventKind.SET_LABELS,
    "v1.compute.instances.update": EventKind.UPDATE_INSTANCE,
    "beta.compute.instances.update": EventKind.UPDATE_INSTANCE,
    # System events
    "compute.instances.automaticRestart": EventKind.AUTOMATIC_RESTART,
    "compute.instances.guestTerminate": EventKind.GUEST_TERMINATE,
    "compute.instances.hostError": EventKind.HOST_ERROR,
    "compute.instances.instanceManagerHaltForRestart": EventKind.INSTANCE_MANAGER_HALT_FOR_RESTART,
    "compute.instances.preempted": EventKind.INSTANCE_PREEMPTED,
    "compute.instances.reset": EventKind.INSTANCE_RESET,
    "compute.instances.migrateOnHostMaintenance": EventKind.MIGRATE_ON_HOST_MAINTENANCE,
    "NotifyInstanceLocation": EventKind.NOTIFY_INSTANCE_LOCATION,
    "compute.instances.recreate": EventKind.RECREATE_INSTANCE,
    "compute.instances.terminateOnHostMaintenance": EventKind.TERMINATE_ON_HOST_MAINTENANCE,
}


# ---------------------------------------------------------------------------
# Payload extraction helpers
# ---------------------------------------------------------------------------


def _parse_instance_id(record: LogRecord) -> int:
    raw = record.resource_label("instance_id")
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


def _parse_instance_reference(record: LogRecord) -> InstanceLocator | None:
    """Derive the instance locator from the resource name, if it has one.

    Some system events (e.g. recreate) name the instance by ID only, in
    which case no locator can be derived.
    """
    resource_name = record.proto_payload.resource_name if record.proto_payload else None
    if not resource_name:
        return None
    try:
        return InstanceLocator.from_string(resource_name)
    except ValueError:
        return None


def _parse_machine_type(value: Any) -> MachineTypeLocator | None:
    if not isinstance(value, str) or not value:
        return None
    if value.startswith("zones/"):
        # Some setMachineType requests omit the project.
        value = "projects/-/" + value
    try:
        return MachineTypeLocator.from_string(value)
    except ValueError:
        logger.warning("Ignoring malformed machine type", machine_type=value)
        return None


def _parse_min_node_cpus(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_scheduling(scheduling: Any, default_policy: str | None) -> SchedulingPolicy | None:
    """Parse a scheduling object from an insert/update/setScheduling request.

    Args:
        scheduling: The scheduling object of the request.
        default_policy: Maintenance policy assumed when onHostMaintenance is
            absent. None means the scheduling object is ignored in that case.

    Returns:
        The scheduling policy, or None if it cannot be determined.
    """
    if not isinstance(scheduling, dict):
        return None
    maintenance_policy = scheduling.get("onHostMaintenance") or default_policy
    if not maintenance_policy:
        return None
    return SchedulingPolicy(
        maintenance_policy=maintenance_policy,
        min_node_cpus=_parse_min_node_cpus(scheduling.get("minNodeCpus")),
    )


def _parse_labels(labels: Any) -> dict[str, str] | None:
    """Parse a request label list of {key, value} objects.

    Entries lacking a key or value are dropped; the first occurrence of a
    key wins.
    """
    if not isinstance(labels, list):
        return None
    result: dict[str, str] = {}
    for item in labels:
        if not isinstance(item, dict):
            continue
        key = item.get("key")
        value = item.get("value")
        if key is None or value is None or key in result:
            continue
        result[str(key)] = str(value)
    return result


def _parse_boot_image(
    request: dict[str, Any],
    default_zone: str | None,
) -> ImageLocator | ImageFamilyViewLocator | None:
    """Extract the boot disk's source image from an insert request.

    Insert requests carry the image as specified by the caller, which may be
    a specific image, a global image family, or a zonal image family view.
    """
    disks = request.get("disks")
    if not isinstance(disks, list):
        return None
    for disk in disks:
        if not isinstance(disk, dict) or not disk.get("boot"):
            continue
        source_image = (disk.get("initializeParams") or {}).get("sourceImage")
        if not source_image:
            continue
        try:
            return image_from_string(source_image, default_zone)
        except ValueError:
            logger.warning("Ignoring malformed source image", source_image=source_image)
    return None


def _parse_node_type(record: LogRecord, node_type: Any) -> NodeTypeLocator | None:
    if not isinstance(node_type, str) or not node_type:
        return None
    if "/" in node_type:
        try:
            return NodeTypeLocator.from_string(node_type)
        except ValueError:
            return None
    project_id = record.resource_label("project_id")
    zone = record.resource_label("zone")
    if not project_id or not zone:
        return None
    return NodeTypeLocator(project_id, zone, node_type)


def _payload_for(kind: EventKind, record: LogRecord) -> dict[str, Any]:
    """Extract the kind-specific payload fields of an event."""
    payload = record.proto_payload
    request = (payload.request if payload is not None else None) or {}
    metadata = (payload.metadata if payload is not None else None) or {}

    if kind == EventKind.INSERT_INSTANCE:
        return {
            "machine_type": _parse_machine_type(request.get("machineType")),
            "scheduling_policy": _parse_scheduling(request.get("scheduling"), "MIGRATE"),
            "labels": _parse_labels(request.get("labels")),
            "image": _parse_boot_image(request, record.resource_label("zone")),
        }
    if kind == EventKind.SET_MACHINE_TYPE:
        return {"machine_type": _parse_machine_type(request.get("machineType"))}
    if kind == EventKind.SET_SCHEDULING:
        return {"scheduling_policy": _parse_scheduling(request, None)}
    if kind == EventKind.SET_LABELS:
        return {"labels": _parse_labels(request.get("labels"))}
    if kind == EventKind.UPDATE_INSTANCE:
        return {
            "machine_type": _parse_machine_type(request.get("machineType")),
            "scheduling_policy": _parse_scheduling(request.get("scheduling"), "TERMINATE"),
            "labels": _parse_labels(request.get("labels")),
        }
    if kind == EventKind.NOTIFY_INSTANCE_LOCATION:
        server_id = metadata.get("serverId")
        return {
            "server_id": str(server_id) if server_id else None,
            "node_type": _parse_node_type(record, metadata.get("nodeType")),
        }
    return {}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify(record: LogRecord) -> EventKind:
    """Determine the EventKind of an audit log record."""
    method_name = record.method_name
    if method_name is not None and method_name in EVENT_METHODS:
        return EVENT_METHODS[method_name]
    if record.is_system_event:
        return EventKind.GENERIC_SYSTEM
    return EventKind.UNKNOWN


def from_record(record: LogRecord) -> InstanceEvent:
    """Create an InstanceEvent from an audit log record.

    Args:
        record: A parsed audit log entry.

    Returns:
        The event. Unsupported methods yield GENERIC_SYSTEM or UNKNOWN events.

    Raises:
        ValueError: If the record is not an audit log record.
    """
    if not record.is_valid_audit_log_record:
        raise ValueError("Not a valid audit log record")

    kind = classify(record)
    operation = record.operation
    return InstanceEvent(
        kind=kind,
        method_name=record.method_name,
        timestamp=record.timestamp,
        instance_id=_parse_instance_id(record),
        instance_reference=_parse_instance_reference(record),
        severity=record.severity,
        is_error=record.is_error,
        is_first=operation.first if operation is not None else False,
        is_last=operation.last if operation is not None else False,
        **_payload_for(kind, record),
    )


def from_entry(entry: dict[str, Any]) -> InstanceEvent:
    """Parse a raw entries:list JSON object and convert it to an event."""
    return from_record(LogRecord.model_validate(entry))
