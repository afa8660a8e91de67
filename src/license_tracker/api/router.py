"""API router for the license tracker.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin: all business logic lives in the service layer.

Endpoints:
- POST   /reports           Create a placement report, optionally submitting it
- GET    /reports/last-run  Date of the newest submitted analysis run
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from license_tracker.adapters.database import get_db_session
from license_tracker.adapters.report_store import SqlReportSink
from license_tracker.api.schemas import CreateReportRequest, LastRunResponse, PlacementReportResponse
from license_tracker.core.services import PlacementReportService, ReportDatasetService
from license_tracker.errors import ValidationError
from license_tracker.observability import get_logger
from license_tracker.settings import Settings

logger = get_logger(__name__)

router = APIRouter(tags=["reports"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_report_service(request: Request) -> PlacementReportService:
    """Return the PlacementReportService created at startup.

    The service holds the Google API adapters, which are shared across
    requests.
    """
    return request.app.state.report_service


def get_dataset_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ReportDatasetService:
    """Construct ReportDatasetService on top of the request's DB session.

    Args:
        session: Report database session.
        settings: Service settings.

    Returns:
        Fully wired ReportDatasetService instance.
    """
    return ReportDatasetService(
        SqlReportSink(session),
        max_rows_per_insert=settings.max_rows_per_insert,
    )


# ---------------------------------------------------------------------------
# Report endpoints
# ---------------------------------------------------------------------------


@router.post("/reports", response_model=PlacementReportResponse)
async def create_report(
    request: CreateReportRequest,
    settings: Annotated[Settings, Depends(get_settings)],
    report_service: Annotated[PlacementReportService, Depends(get_report_service)],
    dataset_service: Annotated[ReportDatasetService, Depends(get_dataset_service)],
) -> PlacementReportResponse:
    """Create a report of placements that started or ended in a window.

    Args:
        request: Report creation request body.
        settings: Service settings.
        report_service: Injected PlacementReportService.
        dataset_service: Injected ReportDatasetService.

    Returns:
        The started and ended placements, plus the run ID if the report was
        submitted.

    Raises:
        HTTPException: 422 if the reporting window cannot be analyzed.
    """
    analysis_window_days = request.analysis_window_days or settings.analysis_window_days
    logger.info(
        "POST /reports",
        projects=request.projects,
        start_date=request.start_date.isoformat(),
        end_date=request.end_date.isoformat(),
        submit=request.submit,
    )

    try:
        report = await report_service.create_report(
            request.projects,
            analysis_window_days,
            request.start_date,
            request.end_date,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.message) from exc

    run_id = None
    if request.submit:
        run_id = await dataset_service.submit_placement_report(report)

    return PlacementReportResponse.from_report(report, run_id)


@router.get("/reports/last-run", response_model=LastRunResponse)
async def get_last_run(
    dataset_service: Annotated[ReportDatasetService, Depends(get_dataset_service)],
) -> LastRunResponse:
    """Get the date of the newest submitted analysis run.

    Args:
        dataset_service: Injected ReportDatasetService.

    Returns:
        The date, or null if no run has been submitted yet.
    """
    return LastRunResponse(last_run_date=await dataset_service.get_last_run_date())
