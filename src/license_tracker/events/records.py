"""Pydantic models for raw Cloud Logging audit log entries.

Only the fields the history builders consume are modelled; everything else
in the entry is ignored. A typical entry looks like:

    {
      "protoPayload": {
        "@type": "type.googleapis.com/google.cloud.audit.AuditLog",
        "methodName": "v1.compute.instances.insert",
        "resourceName": "projects/my-project/zones/us-central1-a/instances/vm-1",
        "request": {...}
      },
      "resource": {
        "type": "gce_instance",
        "labels": {"instance_id": "123", "zone": "us-central1-a", "project_id": "my-project"}
      },
      "timestamp": "2020-05-04T01:50:10.917Z",
      "severity": "NOTICE",
      "logName": "projects/my-project/logs/cloudaudit.googleapis.com%2Factivity",
      "operation": {"id": "operation-1", "first": true}
    }
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACTIVITY_LOG_SUFFIX = "cloudaudit.googleapis.com%2Factivity"
SYSTEM_EVENT_LOG_SUFFIX = "cloudaudit.googleapis.com%2Fsystem_event"

# Cloud Logging emits up to nanosecond precision; datetime keeps microseconds.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


class AuditLogPayload(BaseModel):
    """The protoPayload of an audit log entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    method_name: str | None = Field(default=None, alias="methodName")
    resource_name: str | None = Field(default=None, alias="resourceName")
    service_name: str | None = Field(default=None, alias="serviceName")
    request: dict[str, Any] | None = None
    response: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    status: dict[str, Any] | None = None


class MonitoredResource(BaseModel):
    """The resource an entry refers to, e.g. a gce_instance."""

    model_config = ConfigDict(frozen=True)

    type: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class OperationInfo(BaseModel):
    """Marks the first/last entry of a long-running operation."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    producer: str | None = None
    first: bool = False
    last: bool = False


class LogRecord(BaseModel):
    """A single audit log entry as returned by entries:list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_name: str | None = Field(default=None, alias="logName")
    insert_id: str | None = Field(default=None, alias="insertId")
    proto_payload: AuditLogPayload | None = Field(default=None, alias="protoPayload")
    resource: MonitoredResource | None = None
    timestamp: datetime
    severity: str | None = None
    operation: OperationInfo | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _truncate_nanoseconds(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _EXCESS_FRACTION.sub(r"\1", value)
        return value

    @property
    def is_activity_event(self) -> bool:
        return self.log_name is not None and self.log_name.endswith(ACTIVITY_LOG_SUFFIX)

    @property
    def is_system_event(self) -> bool:
        return self.log_name is not None and self.log_name.endswith(SYSTEM_EVENT_LOG_SUFFIX)

    @property
    def is_valid_audit_log_record(self) -> bool:
        return self.proto_payload is not None and self.proto_payload.method_name is not None

    @property
    def is_error(self) -> bool:
        """True if the entry records a failed operation."""
        if self.severity == "ERROR":
            return True
        status = self.proto_payload.status if self.proto_payload is not None else None
        return bool(status and status.get("code"))

    @property
    def method_name(self) -> str | None:
        return self.proto_payload.method_name if self.proto_payload is not None else None

    def resource_label(self, key: str) -> str | None:
        """Return a monitored-resource label such as zone or instance_id."""
        if self.resource is None:
            return None
        return self.resource.labels.get(key)
