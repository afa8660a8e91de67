"""Audit log events.

Raw Cloud Logging entries are parsed into LogRecords and converted into
immutable InstanceEvents, discriminated by EventKind.
"""

from license_tracker.events.factory import EVENT_METHODS, from_entry, from_record
from license_tracker.events.model import EventKind, InstanceEvent, SchedulingPolicy
from license_tracker.events.records import LogRecord

__all__ = [
    "EVENT_METHODS",
    "EventKind",
    "InstanceEvent",
    "LogRecord",
    "SchedulingPolicy",
    "from_entry",
    "from_record",
]
