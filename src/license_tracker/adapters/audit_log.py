"""Cloud Logging adapter that replays Compute Engine audit log events.

Lists audit log entries through the entries:list API, converts each entry
into an InstanceEvent and hands it to an event processor. The query is
narrowed to the processor's supported method names and severities, and
sorted in the order the processor expects.

Cloud Logging API reference: https://cloud.google.com/logging/docs/reference/v2/rest/v2/entries/list
"""

from collections.abc import Sequence
from datetime import UTC, datetime

from license_tracker.adapters.google_api import GoogleApiClient
from license_tracker.core.interfaces import IEventProcessor
from license_tracker.events.factory import from_entry
from license_tracker.history.instance_set import EventOrder
from license_tracker.observability import get_logger

logger = get_logger(__name__)

# Resource types under which instance events are logged.
_RESOURCE_TYPES = ("gce_instance", "gce_project", "audited_resource")

_DEFAULT_PAGE_SIZE = 1000


def _quoted_alternatives(values: Sequence[str]) -> str:
    return " OR ".join(f'"{value}"' for value in values)


def create_filter(
    method_names: Sequence[str],
    severities: Sequence[str],
    start_time: datetime,
) -> str:
    """Build a Cloud Logging filter expression for instance events.

    Args:
        method_names: Audit log method names to include.
        severities: Log severities to include.
        start_time: Only entries newer than this are included.

    Returns:
        The filter expression.
    """
    timestamp = start_time.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    clauses = [
        f"protoPayload.methodName=({_quoted_alternatives(method_names)})",
        f"severity=({_quoted_alternatives(severities)})",
        f"resource.type=({_quoted_alternatives(_RESOURCE_TYPES)})",
        f'timestamp > "{timestamp}"',
    ]
    return " AND ".join(clauses)


class AuditLogAdapter(GoogleApiClient):
    """Reads instance events from the Cloud Logging API.

    Args:
        base_url: Logging API base URL.
        page_size: Number of entries requested per page.
        **kwargs: Passed through to GoogleApiClient.
    """

    def __init__(self, base_url: str, page_size: int = _DEFAULT_PAGE_SIZE, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(base_url, **kwargs)
        self._page_size = page_size

    async def process_instance_events(
        self,
        project_ids: Sequence[str],
        start_time: datetime,
        processor: IEventProcessor,
    ) -> None:
        """Replay the instance events of a set of projects.

        Entries that cannot be parsed are skipped with a warning.

        Args:
            project_ids: Projects whose audit logs to read.
            start_time: Only events newer than this are replayed.
            processor: Receives the events, in its expected order.

        Raises:
            AccessDeniedError: If the logs of a project are inaccessible.
            ApiError: If listing entries keeps failing.
        """
        order_by = (
            "timestamp desc" if processor.expected_order == EventOrder.NEWEST_FIRST else "timestamp asc"
        )
        body = {
            "resourceNames": [f"projects/{project_id}" for project_id in project_ids],
            "filter": create_filter(
                processor.supported_methods,
                processor.supported_severities,
                start_time,
            ),
            "orderBy": order_by,
            "pageSize": self._page_size,
        }

        logger.info(
            "Reading audit logs",
            project_ids=list(project_ids),
            start_time=start_time.isoformat(),
            order_by=order_by,
        )

        entry_count = 0
        page_token: str | None = None
        while True:
            page_body = dict(body, pageToken=page_token) if page_token else body
            page = await self.request("POST", "entries:list", json_body=page_body)

            for entry in page.get("entries", []):
                try:
                    event = from_entry(entry)
                except ValueError as exc:
                    logger.warning(
                        "Skipping malformed log entry",
                        insert_id=entry.get("insertId"),
                        error=str(exc),
                    )
                    continue

                processor.process(event)
                entry_count += 1

            page_token = page.get("nextPageToken")
            if not page_token:
                break

        logger.info("Finished reading audit logs", project_ids=list(project_ids), entry_count=entry_count)
