"""Pydantic request and response schemas for the license tracker API.

Resources:
- Report: placement report creation and its started/ended records
- LastRun: date of the newest submitted analysis run
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from license_tracker.core.services import PlacementEvent, PlacementReport


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Dates must include a time zone offset")
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Report schemas
# ---------------------------------------------------------------------------


class CreateReportRequest(BaseModel):
    """Request body for creating a placement report."""

    model_config = ConfigDict(frozen=True)

    projects: list[str] = Field(
        min_length=1,
        description="IDs of the projects to analyze",
    )
    start_date: datetime = Field(description="Start of the reporting window (inclusive)")
    end_date: datetime = Field(description="End of the reporting window (exclusive)")
    analysis_window_days: int | None = Field(
        default=None,
        ge=1,
        description="How far back audit logs are available. Defaults to the service setting.",
    )
    submit: bool = Field(
        default=False,
        description="Write the report to the report dataset as a new analysis run",
    )

    @field_validator("start_date", "end_date")
    @classmethod
    def _require_time_zone(cls, value: datetime) -> datetime:
        return _as_utc(value)


class PlacementEventResponse(BaseModel):
    """A placement that started or ended, with the instance's configuration at its start."""

    model_config = ConfigDict(frozen=True)

    instance_id: int = Field(description="Numeric instance ID")
    project_id: str | None = Field(default=None, description="Project of the instance, if known")
    zone: str | None = Field(default=None, description="Zone of the instance, if known")
    name: str | None = Field(default=None, description="Name of the instance, if known")
    date: datetime = Field(description="Start date (started records) or end date (ended records)")
    tenancy: str = Field(description="unknown | fleet | sole_tenant")
    server_id: str | None = Field(default=None, description="Physical server, sole-tenant only")
    node_type: str | None = Field(default=None, description="Sole-tenant node type")
    image: str | None = Field(default=None, description="Boot image")
    license: str | None = Field(default=None, description="License of the boot image")
    operating_system: str | None = Field(default=None, description="unknown | windows | linux")
    license_type: str | None = Field(default=None, description="unknown | byol | spla")
    machine_type: str | None = Field(default=None, description="Machine type")
    vcpu_count: int | None = Field(default=None, description="vCPUs of the machine type")
    memory_mb: int | None = Field(default=None, description="Memory of the machine type")
    maintenance_policy: str | None = Field(default=None, description="MIGRATE | TERMINATE")
    min_node_cpus: int | None = Field(default=None, description="Minimum vCPUs allocated on the node")
    labels: dict[str, str] = Field(default_factory=dict, description="Instance labels")

    @classmethod
    def from_event(cls, event: PlacementEvent) -> "PlacementEventResponse":
        placement = event.placement
        license_info = event.license
        scheduling = event.scheduling_policy
        return cls(
            instance_id=event.instance_id,
            project_id=event.instance.project_id if event.instance else None,
            zone=event.instance.zone if event.instance else None,
            name=event.instance.name if event.instance else None,
            date=event.date,
            tenancy=placement.tenancy.value,
            server_id=placement.server_id,
            node_type=str(placement.node_type) if placement.node_type else None,
            image=str(event.image) if event.image else None,
            license=(
                str(license_info.license) if license_info and license_info.license else None
            ),
            operating_system=license_info.operating_system.value if license_info else None,
            license_type=license_info.license_type.value if license_info else None,
            machine_type=str(event.machine_type) if event.machine_type else None,
            vcpu_count=event.machine.vcpu_count if event.machine else None,
            memory_mb=event.machine.memory_mb if event.machine else None,
            maintenance_policy=scheduling.maintenance_policy if scheduling else None,
            min_node_cpus=scheduling.min_node_cpus if scheduling else None,
            labels=dict(event.labels or {}),
        )


class PlacementReportResponse(BaseModel):
    """Response schema for a placement report."""

    model_config = ConfigDict(frozen=True)

    start_date: datetime = Field(description="Start of the reporting window")
    end_date: datetime = Field(description="End of the reporting window")
    run_id: int | None = Field(
        default=None,
        description="Analysis run ID if the report was submitted to the report dataset",
    )
    started_placements: list[PlacementEventResponse] = Field(default_factory=list)
    ended_placements: list[PlacementEventResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: PlacementReport, run_id: int | None = None) -> "PlacementReportResponse":
        return cls(
            start_date=report.start_date,
            end_date=report.end_date,
            run_id=run_id,
            started_placements=[PlacementEventResponse.from_event(e) for e in report.started_placements],
            ended_placements=[PlacementEventResponse.from_event(e) for e in report.ended_placements],
        )


# ---------------------------------------------------------------------------
# Analysis run schemas
# ---------------------------------------------------------------------------


class LastRunResponse(BaseModel):
    """Response schema for the newest analysis run."""

    model_config = ConfigDict(frozen=True)

    last_run_date: datetime | None = Field(
        default=None,
        description="End of the reporting window of the newest run, or null if none exists",
    )
