"""Core business logic services for the license tracker.

Four service classes:
- InstanceHistoryService: Seeds and replays the instance set history for a set of projects
- LookupService: Resolves images to licenses and machine types to machine sizes
- PlacementReportService: Turns placement histories into started/ended placement records
- ReportDatasetService: Writes placement reports to the report sink

All services are async-first. They accept injected adapters through their
constructors and contain no framework code. Inaccessible projects and
missing resources are logged and skipped so that a report degrades
gracefully instead of failing as a whole.
"""

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from license_tracker import __version__
from license_tracker.core.interfaces import (
    IEventSource,
    IInventorySource,
    IReportSink,
    IResourceLookup,
)
from license_tracker.core.licenses import (
    LicenseInfo,
    LicenseType,
    MachineInfo,
    OperatingSystemType,
    select_relevant_license,
)
from license_tracker.errors import AccessDeniedError, ApiError, NotFoundError, ValidationError
from license_tracker.events.model import SchedulingPolicy
from license_tracker.history.configuration import ImageReference
from license_tracker.history.instance_set import InstanceSetHistory, InstanceSetHistoryBuilder
from license_tracker.history.placement import Placement, Tenancy
from license_tracker.inventory import SoleTenantNode
from license_tracker.locators import InstanceLocator, MachineTypeLocator
from license_tracker.observability import get_logger

logger = get_logger(__name__)

# Images of this project are Windows SPLA images even if they no longer exist.
_WINDOWS_IMAGE_PROJECT = "windows-cloud"

PLACEMENT_STARTED_TABLE = "placement_started_events"
PLACEMENT_ENDED_TABLE = "placement_ended_events"
ANALYSIS_RUNS_TABLE = "analysis_runs"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _version_number(version: str) -> int:
    """Pack a dotted version string into a sortable 64-bit integer."""
    parts = [int(p) if p.isdigit() else 0 for p in version.split(".")[:4]]
    parts += [0] * (4 - len(parts))
    return (parts[0] << 48) | (parts[1] << 32) | (parts[2] << 16) | parts[3]


# ---------------------------------------------------------------------------
# Report model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlacementEvent:
    """A placement starting or ending, enriched with the instance's configuration.

    Attributes:
        instance_id: Numeric instance ID.
        instance: Project, zone and name of the instance, if known.
        placement: The placement that started or ended.
        date: Start date (started records) or end date (ended records).
        image: Boot image at the start of the placement.
        license: License of the boot image.
        machine_type: Machine type at the start of the placement.
        machine: Size of the machine type.
        scheduling_policy: Scheduling policy at the start of the placement.
        labels: Labels at the start of the placement.
    """

    instance_id: int
    instance: InstanceLocator | None
    placement: Placement
    date: datetime
    image: ImageReference | None = None
    license: LicenseInfo | None = None
    machine_type: MachineTypeLocator | None = None
    machine: MachineInfo | None = None
    scheduling_policy: SchedulingPolicy | None = None
    labels: dict[str, str] | None = None


@dataclass(frozen=True)
class PlacementReport:
    """Placements that started or ended within a reporting window."""

    start_date: datetime
    end_date: datetime
    started_placements: list[PlacementEvent] = field(default_factory=list)
    ended_placements: list[PlacementEvent] = field(default_factory=list)


# ---------------------------------------------------------------------------
# InstanceHistoryService
# ---------------------------------------------------------------------------


class InstanceHistoryService:
    """Builds the instance set history of a set of projects.

    Sole-tenant nodes are listed up front because they may be shared across
    projects. Each project is then processed in turn: its current instances
    seed the builder, and its audit log is replayed. A project that is
    inaccessible, or whose API calls keep failing, is skipped with a warning.

    Args:
        inventory: Source of instances, disks and nodes.
        event_source: Source of audit log events.
        now: Clock, injectable for tests.
    """

    def __init__(
        self,
        inventory: IInventorySource,
        event_source: IEventSource,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._inventory = inventory
        self._event_source = event_source
        self._now = now

    async def _list_nodes(self, project_ids: Sequence[str]) -> list[SoleTenantNode]:
        results = await asyncio.gather(
            *(self._inventory.list_nodes(project_id) for project_id in project_ids),
            return_exceptions=True,
        )

        nodes: list[SoleTenantNode] = []
        for project_id, result in zip(project_ids, results):
            if isinstance(result, AccessDeniedError):
                logger.warning(
                    "Ignoring project as it is inaccessible",
                    project_id=project_id,
                    error=result.message,
                )
            elif isinstance(result, ApiError):
                logger.warning(
                    "Ignoring nodes of project after API failure",
                    project_id=project_id,
                    error=result.message,
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                nodes.extend(result)
        return nodes

    async def build_instance_set_history(
        self,
        project_ids: Sequence[str],
        start_date: datetime,
    ) -> InstanceSetHistory:
        """Reconstruct the history of all instances in the given projects.

        Args:
            project_ids: Projects to analyze.
            start_date: Start of the analysis window (UTC).

        Returns:
            The instance set history from start_date until now.
        """
        builder = InstanceSetHistoryBuilder(start_date, self._now())
        nodes = await self._list_nodes(project_ids)

        for project_id in project_ids:
            logger.info("Analyzing placement history", project_id=project_id)
            try:
                # instances.list lacks source images, so disks are joined in.
                disks, instances = await asyncio.gather(
                    self._inventory.list_disks(project_id),
                    self._inventory.list_instances(project_id),
                )
                builder.add_existing_instances(instances, nodes, disks, project_id)

                # Querying several projects at once makes the logging API
                # unreliable, so query one project at a time.
                await self._event_source.process_instance_events(
                    [project_id],
                    builder.start_date,
                    builder,
                )
                logger.info("Finished analyzing placement history", project_id=project_id)
            except AccessDeniedError as exc:
                logger.warning(
                    "Ignoring project as it is inaccessible",
                    project_id=project_id,
                    error=exc.message,
                )
            except ApiError as exc:
                logger.warning(
                    "Ignoring project after API failure",
                    project_id=project_id,
                    status_code=exc.status_code,
                    error=exc.message,
                )

        return builder.build()


# ---------------------------------------------------------------------------
# LookupService
# ---------------------------------------------------------------------------


class LookupService:
    """Looks up licenses of images and sizes of machine types.

    Args:
        resources: Adapter for image and machine type reads.
    """

    def __init__(self, resources: IResourceLookup) -> None:
        self._resources = resources

    async def lookup_license_info(
        self,
        images: Iterable[ImageReference],
    ) -> dict[ImageReference, LicenseInfo]:
        """Determine the license of each image.

        Images that cannot be found or accessed are omitted from the result,
        except for deleted windows-cloud images, which are known to be
        Windows SPLA images.

        Args:
            images: Images to look up. Duplicates are looked up once.

        Returns:
            License info keyed by image.
        """
        result: dict[ImageReference, LicenseInfo] = {}
        for image in dict.fromkeys(images):
            try:
                image_info = await self._resources.get_image(image)
                result[image] = LicenseInfo.from_license(
                    select_relevant_license(image_info.licenses)
                )
            except NotFoundError as exc:
                if image.project_id == _WINDOWS_IMAGE_PROJECT:
                    result[image] = LicenseInfo(
                        None, OperatingSystemType.WINDOWS, LicenseType.SPLA
                    )
                    logger.warning(
                        "License could not be found, but must be Windows/SPLA",
                        image=str(image),
                    )
                else:
                    logger.warning("License could not be found", image=str(image), error=exc.message)
            except AccessDeniedError as exc:
                logger.warning("License could not be accessed", image=str(image), error=exc.message)

        return result

    async def lookup_machine_info(
        self,
        machine_types: Iterable[MachineTypeLocator],
    ) -> dict[MachineTypeLocator, MachineInfo]:
        """Determine the vCPU count and memory size of each machine type.

        Machine types are read one by one: aggregated listings omit custom
        machine types and repeat every type for each zone.

        Args:
            machine_types: Machine types to look up. Duplicates are looked up once.

        Returns:
            Machine info keyed by machine type. Unknown types are omitted.
        """
        result: dict[MachineTypeLocator, MachineInfo] = {}
        for machine_type in dict.fromkeys(machine_types):
            try:
                details = await self._resources.get_machine_type(machine_type)
            except NotFoundError as exc:
                logger.warning(
                    "Machine type could not be found",
                    machine_type=str(machine_type),
                    error=exc.message,
                )
                continue
            except AccessDeniedError as exc:
                logger.warning(
                    "Machine type could not be accessed",
                    machine_type=str(machine_type),
                    error=exc.message,
                )
                continue

            if details.guest_cpus is not None and details.memory_mb is not None:
                result[machine_type] = MachineInfo(machine_type, details.guest_cpus, details.memory_mb)

        return result


# ---------------------------------------------------------------------------
# PlacementReportService
# ---------------------------------------------------------------------------


class PlacementReportService:
    """Creates placement reports for a reporting window.

    The history is reconstructed from the start of the reporting window
    until now, so that placements ending shortly before the end of the
    reporting window are not missed because of audit log delays.

    Args:
        history_service: Reconstructs instance set histories.
        lookup_service: Resolves licenses and machine sizes.
        now: Clock, injectable for tests.
    """

    def __init__(
        self,
        history_service: InstanceHistoryService,
        lookup_service: LookupService,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._history_service = history_service
        self._lookup_service = lookup_service
        self._now = now

    def validate_reporting_window(
        self,
        analysis_window_days: int,
        start_date: datetime,
        end_date: datetime,
    ) -> None:
        """Reject reporting windows that cannot be analyzed.

        Raises:
            ValidationError: If the window is empty or extends into the
                future, or begins before the analysis window.
        """
        now = self._now()
        if start_date >= end_date or end_date > now:
            raise ValidationError("Invalid reporting window")
        if start_date < now - timedelta(days=analysis_window_days):
            raise ValidationError("Analysis window must begin prior to reporting window")

    async def create_report(
        self,
        project_ids: Sequence[str],
        analysis_window_days: int,
        start_date: datetime,
        end_date: datetime,
    ) -> PlacementReport:
        """Create a report of placements that started or ended in a window.

        Args:
            project_ids: Projects to analyze.
            analysis_window_days: How far back audit logs are available.
            start_date: Start of the reporting window (inclusive, UTC).
            end_date: End of the reporting window (exclusive, UTC).

        Returns:
            The placement report.

        Raises:
            ValidationError: If the reporting window is invalid.
        """
        self.validate_reporting_window(analysis_window_days, start_date, end_date)

        logger.info(
            "Analyzing projects",
            project_ids=list(project_ids),
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            analysis_window_days=analysis_window_days,
        )

        history = await self._history_service.build_instance_set_history(project_ids, start_date)

        licenses = await self._lookup_service.lookup_license_info(
            image for h in history.image_histories.values() for image in h.all_values
        )
        machines = await self._lookup_service.lookup_machine_info(
            machine_type
            for h in history.machine_type_histories.values()
            for machine_type in h.all_values
        )

        return assemble_report(history, start_date, end_date, licenses, machines)


def assemble_report(
    history: InstanceSetHistory,
    start_date: datetime,
    end_date: datetime,
    licenses: dict[ImageReference, LicenseInfo],
    machines: dict[MachineTypeLocator, MachineInfo],
) -> PlacementReport:
    """Join placement histories with configuration histories and lookups.

    A placement yields a started record if it starts at or after start_date
    and an ended record if it ends before end_date. Both records describe
    the instance's configuration as of the start of the placement.

    Args:
        history: The instance set history.
        start_date: Start of the reporting window (inclusive).
        end_date: End of the reporting window (exclusive).
        licenses: License info keyed by image.
        machines: Machine info keyed by machine type.

    Returns:
        The placement report.
    """
    report = PlacementReport(start_date=start_date, end_date=end_date)

    for placement_history in history.placement_histories:
        instance_id = placement_history.instance_id
        image_history = history.image_histories.get(instance_id)
        machine_type_history = history.machine_type_histories.get(instance_id)
        scheduling_history = history.scheduling_policy_histories.get(instance_id)
        label_history = history.label_histories.get(instance_id)

        for placement in placement_history.placements:
            image = image_history.get_historic_value(placement.start) if image_history else None
            machine_type = (
                machine_type_history.get_historic_value(placement.start)
                if machine_type_history
                else None
            )

            context: dict[str, Any] = {
                "instance_id": instance_id,
                "instance": placement_history.reference,
                "placement": placement,
                "image": image,
                "license": licenses.get(image) if image is not None else None,
                "machine_type": machine_type,
                "machine": machines.get(machine_type) if machine_type is not None else None,
                "scheduling_policy": (
                    scheduling_history.get_historic_value(placement.start)
                    if scheduling_history
                    else None
                ),
                "labels": (
                    label_history.get_historic_value(placement.start) if label_history else None
                ),
            }

            if placement.start >= start_date:
                report.started_placements.append(PlacementEvent(date=placement.start, **context))
            if placement.end < end_date:
                report.ended_placements.append(PlacementEvent(date=placement.end, **context))

    return report


# ---------------------------------------------------------------------------
# ReportDatasetService
# ---------------------------------------------------------------------------

_TENANCY_CODES = {Tenancy.FLEET: "F", Tenancy.SOLE_TENANT: "S"}
_OPERATING_SYSTEM_CODES = {OperatingSystemType.WINDOWS: "WIN", OperatingSystemType.LINUX: "LINUX"}
_LICENSE_TYPE_CODES = {LicenseType.BYOL: "BYOL", LicenseType.SPLA: "SPLA"}


def run_id_for(end_date: datetime) -> int:
    """Return the ID of the analysis run covering a window ending at end_date."""
    return int(end_date.timestamp() * 1000)


def started_row(run_id: int, event: PlacementEvent) -> dict[str, Any]:
    """Convert a started placement into a placement_started_events row."""
    assert event.instance is not None
    placement = event.placement
    license_info = event.license
    machine = event.machine
    scheduling = event.scheduling_policy

    return {
        "run_id": run_id,
        "instance_id": event.instance_id,
        "instance_project_id": event.instance.project_id,
        "instance_zone": event.instance.zone,
        "instance_name": event.instance.name,
        "image_project_id": event.image.project_id if event.image is not None else None,
        "image_name": event.image.name if event.image is not None else None,
        "date": event.date,
        "tenancy": _TENANCY_CODES.get(placement.tenancy),
        "server_id": placement.server_id,
        "node_type": placement.node_type.name if placement.node_type is not None else None,
        "node_project_id": (
            placement.node_type.project_id if placement.node_type is not None else None
        ),
        "operating_system_family": (
            _OPERATING_SYSTEM_CODES.get(license_info.operating_system) if license_info else None
        ),
        "license": (
            str(license_info.license)
            if license_info is not None and license_info.license is not None
            else None
        ),
        "license_type": _LICENSE_TYPE_CODES.get(license_info.license_type) if license_info else None,
        "machine_type": event.machine_type.name if event.machine_type is not None else None,
        "vcpu_count": machine.vcpu_count if machine is not None else None,
        "memory_mb": machine.memory_mb if machine is not None else None,
        "maintenance_policy": scheduling.maintenance_policy if scheduling is not None else None,
        "vcpu_min_allocated": scheduling.min_node_cpus if scheduling is not None else None,
        "labels": [{"key": k, "value": v} for k, v in (event.labels or {}).items()],
    }


def ended_row(run_id: int, event: PlacementEvent) -> dict[str, Any]:
    """Convert an ended placement into a placement_ended_events row."""
    return {
        "run_id": run_id,
        "instance_id": event.instance_id,
        "date": event.date,
    }


class ReportDatasetService:
    """Persists placement reports to the report sink.

    Every submission is an analysis run identified by the Unix time (in
    milliseconds) of the reporting window's end. Placement rows are written
    first; the run marker is written last so that readers only see runs
    whose rows are complete.

    Args:
        sink: Tabular storage for report rows.
        max_rows_per_insert: Maximum number of rows per insert call.
        version: Application version recorded with each run.
    """

    def __init__(
        self,
        sink: IReportSink,
        max_rows_per_insert: int = 1000,
        version: str = __version__,
    ) -> None:
        self._sink = sink
        self._max_rows_per_insert = max_rows_per_insert
        self._version = _version_number(version)

    async def prepare(self) -> None:
        await self._sink.prepare()

    async def get_last_run_date(self) -> datetime | None:
        return await self._sink.get_last_run_date()

    async def _insert_chunked(self, table: str, rows: list[dict[str, Any]]) -> None:
        for offset in range(0, len(rows), self._max_rows_per_insert):
            await self._sink.insert_rows(table, rows[offset : offset + self._max_rows_per_insert])

    async def submit_placement_report(self, report: PlacementReport) -> int:
        """Write a placement report as a new analysis run.

        Placements of instances whose project, zone and name are unknown
        cannot be attributed and are skipped.

        Args:
            report: The report to write.

        Returns:
            The run ID.
        """
        run_id = run_id_for(report.end_date)

        started = [
            started_row(run_id, e) for e in report.started_placements if e.instance is not None
        ]
        ended = [ended_row(run_id, e) for e in report.ended_placements if e.instance is not None]

        await self._insert_chunked(PLACEMENT_STARTED_TABLE, started)
        await self._insert_chunked(PLACEMENT_ENDED_TABLE, ended)
        await self._sink.insert_rows(
            ANALYSIS_RUNS_TABLE,
            [{"run_id": run_id, "date": report.end_date, "version": self._version}],
        )

        logger.info(
            "Placement report submitted",
            run_id=run_id,
            started_count=len(started),
            ended_count=len(ended),
        )
        return run_id
