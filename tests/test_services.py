"""Tests for core business logic services.

Tests InstanceHistoryService, LookupService, PlacementReportService and
ReportDatasetService, plus license classification. Uses mock adapters.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from license_tracker.core.licenses import (
    LicenseInfo,
    LicenseType,
    OperatingSystemType,
    select_relevant_license,
)
from license_tracker.core.services import (
    ANALYSIS_RUNS_TABLE,
    PLACEMENT_ENDED_TABLE,
    PLACEMENT_STARTED_TABLE,
    InstanceHistoryService,
    LookupService,
    PlacementEvent,
    PlacementReport,
    PlacementReportService,
    ReportDatasetService,
    assemble_report,
    run_id_for,
)
from license_tracker.errors import AccessDeniedError, ApiError, NotFoundError, ValidationError
from license_tracker.events import EventKind, InstanceEvent, SchedulingPolicy
from license_tracker.history import InstanceSetHistoryBuilder, Placement
from license_tracker.inventory import Image, MachineType
from license_tracker.locators import (
    ImageLocator,
    InstanceLocator,
    LicenseLocator,
    MachineTypeLocator,
)

WINDOWS_SPLA = "https://www.googleapis.com/compute/v1/projects/windows-cloud/global/licenses/windows-server-2019-dc"
WINDOWS_BYOL = "https://www.googleapis.com/compute/v1/projects/windows-cloud/global/licenses/windows-server-2019-byol"
DEBIAN = "https://www.googleapis.com/compute/v1/projects/debian-cloud/global/licenses/debian-11-bullseye"

NOW = datetime(2020, 1, 2, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_event(kind: EventKind, timestamp: datetime, **payload: Any) -> InstanceEvent:
    return InstanceEvent(kind=kind, timestamp=timestamp, instance_id=123, **payload)


def deliver(events: Sequence[InstanceEvent]) -> Any:
    """Return a process_instance_events side effect replaying the given events."""

    async def _deliver(project_ids: Sequence[str], start_time: datetime, processor: Any) -> None:
        for event in events:
            processor.process(event)

    return _deliver


def make_placement_event(
    instance: InstanceLocator | None,
    date: datetime,
    **kwargs: Any,
) -> PlacementEvent:
    return PlacementEvent(
        instance_id=123,
        instance=instance,
        placement=Placement.fleet(date, date + timedelta(hours=1)),
        date=date,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Test 1: License classification
# ---------------------------------------------------------------------------


class TestLicenses:
    """Tests for relevant license selection and classification."""

    def test_byol_license_takes_precedence(self) -> None:
        license = select_relevant_license([DEBIAN, WINDOWS_SPLA, WINDOWS_BYOL])

        assert license == LicenseLocator.from_string(WINDOWS_BYOL)

    def test_windows_license_takes_precedence_over_others(self) -> None:
        license = select_relevant_license([DEBIAN, WINDOWS_SPLA])

        assert license == LicenseLocator.from_string(WINDOWS_SPLA)

    def test_malformed_licenses_are_ignored(self) -> None:
        assert select_relevant_license(["not-a-license", DEBIAN]) == LicenseLocator.from_string(DEBIAN)

    def test_image_without_licenses(self) -> None:
        assert select_relevant_license([]) is None

    @pytest.mark.parametrize(
        ("license_url", "operating_system", "license_type"),
        [
            (WINDOWS_SPLA, OperatingSystemType.WINDOWS, LicenseType.SPLA),
            (WINDOWS_BYOL, OperatingSystemType.WINDOWS, LicenseType.BYOL),
            (DEBIAN, OperatingSystemType.LINUX, LicenseType.UNKNOWN),
            (None, OperatingSystemType.UNKNOWN, LicenseType.UNKNOWN),
        ],
    )
    def test_license_info_from_license(
        self,
        license_url: str | None,
        operating_system: OperatingSystemType,
        license_type: LicenseType,
    ) -> None:
        license = LicenseLocator.from_string(license_url) if license_url else None

        info = LicenseInfo.from_license(license)

        assert info.operating_system == operating_system
        assert info.license_type == license_type


# ---------------------------------------------------------------------------
# Test 2: LookupService
# ---------------------------------------------------------------------------


class TestLookupService:
    """Tests for license and machine type lookups."""

    @pytest.mark.asyncio()
    async def test_lookup_license_info(self, mock_resources: AsyncMock, sample_image: ImageLocator) -> None:
        mock_resources.get_image.return_value = Image(licenses=[DEBIAN, WINDOWS_SPLA])

        result = await LookupService(mock_resources).lookup_license_info([sample_image, sample_image])

        assert result[sample_image].operating_system == OperatingSystemType.WINDOWS
        assert result[sample_image].license_type == LicenseType.SPLA
        mock_resources.get_image.assert_called_once_with(sample_image)

    @pytest.mark.asyncio()
    async def test_deleted_windows_image_is_assumed_spla(self, mock_resources: AsyncMock) -> None:
        image = ImageLocator("windows-cloud", "windows-server-2012-r2-dc-v20190101")
        mock_resources.get_image.side_effect = NotFoundError("not found", status_code=404)

        result = await LookupService(mock_resources).lookup_license_info([image])

        assert result[image] == LicenseInfo(None, OperatingSystemType.WINDOWS, LicenseType.SPLA)

    @pytest.mark.asyncio()
    async def test_missing_or_inaccessible_images_are_omitted(self, mock_resources: AsyncMock) -> None:
        missing = ImageLocator("project-1", "deleted-image")
        private = ImageLocator("project-2", "private-image")
        mock_resources.get_image.side_effect = [
            NotFoundError("not found", status_code=404),
            AccessDeniedError("denied", status_code=403),
        ]

        result = await LookupService(mock_resources).lookup_license_info([missing, private])

        assert result == {}

    @pytest.mark.asyncio()
    async def test_lookup_machine_info(
        self,
        mock_resources: AsyncMock,
        sample_machine_type: MachineTypeLocator,
    ) -> None:
        unknown = MachineTypeLocator("project-1", "us-central1-a", "custom-99")
        mock_resources.get_machine_type.side_effect = [
            MachineType.model_validate({"name": "e2-medium", "guestCpus": 2, "memoryMb": 4096}),
            NotFoundError("not found", status_code=404),
        ]

        result = await LookupService(mock_resources).lookup_machine_info([sample_machine_type, unknown])

        assert list(result) == [sample_machine_type]
        assert result[sample_machine_type].vcpu_count == 2
        assert result[sample_machine_type].memory_mb == 4096


# ---------------------------------------------------------------------------
# Test 3: InstanceHistoryService
# ---------------------------------------------------------------------------


class TestInstanceHistoryService:
    """Tests for per-project history reconstruction."""

    @pytest.mark.asyncio()
    async def test_inaccessible_projects_are_skipped(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        report_start: datetime,
    ) -> None:
        async def list_instances(project_id: str) -> list[Any]:
            if project_id == "project-1":
                raise AccessDeniedError("denied", status_code=403)
            return []

        mock_inventory.list_nodes.side_effect = AccessDeniedError("denied", status_code=403)
        mock_inventory.list_instances.side_effect = list_instances
        service = InstanceHistoryService(mock_inventory, mock_event_source, now=lambda: NOW)

        history = await service.build_instance_set_history(["project-1", "project-2"], report_start)

        assert history.placement_histories == ()
        mock_event_source.process_instance_events.assert_called_once()
        assert mock_event_source.process_instance_events.call_args.args[0] == ["project-2"]

    @pytest.mark.asyncio()
    async def test_project_is_skipped_after_api_failure(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        report_start: datetime,
    ) -> None:
        mock_event_source.process_instance_events.side_effect = ApiError("unavailable", status_code=503)
        service = InstanceHistoryService(mock_inventory, mock_event_source, now=lambda: NOW)

        history = await service.build_instance_set_history(["project-1"], report_start)

        assert history.end_date == NOW
        assert history.placement_histories == ()

    @pytest.mark.asyncio()
    async def test_events_are_replayed_into_history(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        report_start: datetime,
        sample_reference: InstanceLocator,
    ) -> None:
        mock_event_source.process_instance_events.side_effect = deliver(
            [
                make_event(EventKind.DELETE_INSTANCE, datetime(2019, 12, 20, tzinfo=UTC), instance_reference=sample_reference),
                make_event(EventKind.INSERT_INSTANCE, datetime(2019, 12, 10, tzinfo=UTC), instance_reference=sample_reference),
            ]
        )
        service = InstanceHistoryService(mock_inventory, mock_event_source, now=lambda: NOW)

        history = await service.build_instance_set_history(["project-1"], report_start)

        assert len(history.placement_histories) == 1
        assert history.placement_histories[0].instance_id == 123
        start_time = mock_event_source.process_instance_events.call_args.args[1]
        assert start_time == report_start


# ---------------------------------------------------------------------------
# Test 4: PlacementReportService
# ---------------------------------------------------------------------------


class TestPlacementReportService:
    """Tests for reporting window validation and report assembly."""

    def _make_service(
        self,
        inventory: AsyncMock,
        event_source: AsyncMock,
        resources: AsyncMock,
    ) -> PlacementReportService:
        return PlacementReportService(
            InstanceHistoryService(inventory, event_source, now=lambda: NOW),
            LookupService(resources),
            now=lambda: NOW,
        )

    @pytest.mark.parametrize(
        ("start_date", "end_date", "message"),
        [
            (datetime(2019, 12, 1, tzinfo=UTC), datetime(2019, 12, 1, tzinfo=UTC), "Invalid reporting window"),
            (datetime(2019, 12, 2, tzinfo=UTC), datetime(2019, 12, 1, tzinfo=UTC), "Invalid reporting window"),
            (datetime(2019, 12, 1, tzinfo=UTC), datetime(2020, 1, 3, tzinfo=UTC), "Invalid reporting window"),
            (datetime(2019, 9, 1, tzinfo=UTC), datetime(2019, 12, 1, tzinfo=UTC), "Analysis window"),
        ],
    )
    def test_invalid_reporting_windows_are_rejected(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        mock_resources: AsyncMock,
        start_date: datetime,
        end_date: datetime,
        message: str,
    ) -> None:
        service = self._make_service(mock_inventory, mock_event_source, mock_resources)

        with pytest.raises(ValidationError, match=message):
            service.validate_reporting_window(90, start_date, end_date)

    @pytest.mark.asyncio()
    async def test_create_report(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        mock_resources: AsyncMock,
        report_start: datetime,
        report_end: datetime,
        sample_reference: InstanceLocator,
        sample_machine_type: MachineTypeLocator,
    ) -> None:
        image = ImageLocator("windows-cloud", "windows-server-2019-dc-v20191210")
        mock_event_source.process_instance_events.side_effect = deliver(
            [
                make_event(EventKind.DELETE_INSTANCE, datetime(2019, 12, 20, tzinfo=UTC), instance_reference=sample_reference),
                make_event(
                    EventKind.INSERT_INSTANCE,
                    datetime(2019, 12, 10, tzinfo=UTC),
                    instance_reference=sample_reference,
                    image=image,
                    machine_type=sample_machine_type,
                    scheduling_policy=SchedulingPolicy("MIGRATE"),
                    labels={"env": "prod"},
                ),
            ]
        )
        mock_resources.get_image.return_value = Image(licenses=[WINDOWS_SPLA])
        mock_resources.get_machine_type.return_value = MachineType.model_validate(
            {"guestCpus": 2, "memoryMb": 4096}
        )
        service = self._make_service(mock_inventory, mock_event_source, mock_resources)

        report = await service.create_report(["project-1"], 90, report_start, report_end)

        assert len(report.started_placements) == 1
        assert len(report.ended_placements) == 1
        started = report.started_placements[0]
        assert started.date == datetime(2019, 12, 10, tzinfo=UTC)
        assert started.instance == sample_reference
        assert started.image == image
        assert started.license is not None
        assert started.license.license_type == LicenseType.SPLA
        assert started.machine is not None
        assert started.machine.vcpu_count == 2
        assert started.scheduling_policy == SchedulingPolicy("MIGRATE")
        assert started.labels == {"env": "prod"}
        assert report.ended_placements[0].date == datetime(2019, 12, 20, tzinfo=UTC)

    @pytest.mark.asyncio()
    async def test_create_report_rejects_invalid_window_before_analysis(
        self,
        mock_inventory: AsyncMock,
        mock_event_source: AsyncMock,
        mock_resources: AsyncMock,
        report_start: datetime,
    ) -> None:
        service = self._make_service(mock_inventory, mock_event_source, mock_resources)

        with pytest.raises(ValidationError):
            await service.create_report(["project-1"], 90, report_start, report_start)

        mock_inventory.list_nodes.assert_not_called()

    def test_placements_spanning_window_yield_no_records(
        self,
        report_start: datetime,
        report_end: datetime,
        sample_reference: InstanceLocator,
    ) -> None:
        builder = InstanceSetHistoryBuilder(report_start - timedelta(days=10), report_end + timedelta(days=1))
        builder.process(
            make_event(EventKind.STOP_INSTANCE, report_end + timedelta(hours=1), instance_reference=sample_reference)
        )
        builder.process(
            make_event(EventKind.START_INSTANCE, report_start - timedelta(days=1), instance_reference=sample_reference)
        )

        report = assemble_report(builder.build(), report_start, report_end, {}, {})

        assert report.started_placements == []
        assert report.ended_placements == []


# ---------------------------------------------------------------------------
# Test 5: ReportDatasetService
# ---------------------------------------------------------------------------


class TestReportDatasetService:
    """Tests for writing placement reports to the sink."""

    @pytest.mark.asyncio()
    async def test_submit_writes_rows_then_run_marker(
        self,
        mock_sink: AsyncMock,
        report_start: datetime,
        report_end: datetime,
        sample_reference: InstanceLocator,
    ) -> None:
        started = [make_placement_event(sample_reference, report_start + timedelta(days=day)) for day in range(3)]
        report = PlacementReport(
            start_date=report_start,
            end_date=report_end,
            started_placements=[*started, make_placement_event(None, report_start)],
            ended_placements=[make_placement_event(sample_reference, report_start + timedelta(days=5))],
        )
        service = ReportDatasetService(mock_sink, max_rows_per_insert=2, version="1.0.0")

        run_id = await service.submit_placement_report(report)

        assert run_id == int(report_end.timestamp() * 1000) == run_id_for(report_end)
        calls = mock_sink.insert_rows.call_args_list
        assert [c.args[0] for c in calls] == [
            PLACEMENT_STARTED_TABLE,
            PLACEMENT_STARTED_TABLE,
            PLACEMENT_ENDED_TABLE,
            ANALYSIS_RUNS_TABLE,
        ]
        assert [len(c.args[1]) for c in calls] == [2, 1, 1, 1]
        assert calls[-1].args[1] == [{"run_id": run_id, "date": report_end, "version": 1 << 48}]

    @pytest.mark.asyncio()
    async def test_started_row_columns(
        self,
        mock_sink: AsyncMock,
        report_start: datetime,
        report_end: datetime,
        sample_reference: InstanceLocator,
        sample_machine_type: MachineTypeLocator,
    ) -> None:
        license = LicenseLocator.from_string(WINDOWS_BYOL)
        event = make_placement_event(
            sample_reference,
            report_start,
            image=ImageLocator("windows-cloud", "windows-server-2019"),
            license=LicenseInfo.from_license(license),
            machine_type=sample_machine_type,
            scheduling_policy=SchedulingPolicy("TERMINATE", 4),
            labels={"env": "prod"},
        )
        report = PlacementReport(report_start, report_end, started_placements=[event])

        await ReportDatasetService(mock_sink).submit_placement_report(report)

        row = mock_sink.insert_rows.call_args_list[0].args[1][0]
        assert row["instance_project_id"] == "project-1"
        assert row["instance_zone"] == "us-central1-a"
        assert row["instance_name"] == "instance-1"
        assert row["image_project_id"] == "windows-cloud"
        assert row["tenancy"] == "F"
        assert row["operating_system_family"] == "WIN"
        assert row["license_type"] == "BYOL"
        assert row["license"] == str(license)
        assert row["machine_type"] == "e2-medium"
        assert row["maintenance_policy"] == "TERMINATE"
        assert row["vcpu_min_allocated"] == 4
        assert row["labels"] == [{"key": "env", "value": "prod"}]

    @pytest.mark.asyncio()
    async def test_empty_report_writes_only_run_marker(
        self,
        mock_sink: AsyncMock,
        report_start: datetime,
        report_end: datetime,
    ) -> None:
        await ReportDatasetService(mock_sink).submit_placement_report(PlacementReport(report_start, report_end))

        mock_sink.insert_rows.assert_called_once()
        assert mock_sink.insert_rows.call_args.args[0] == ANALYSIS_RUNS_TABLE

    @pytest.mark.asyncio()
    async def test_get_last_run_date_delegates_to_sink(self, mock_sink: AsyncMock, report_end: datetime) -> None:
        mock_sink.get_last_run_date.return_value = report_end

        assert await ReportDatasetService(mock_sink).get_last_run_date() == report_end
