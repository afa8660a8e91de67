"""Abstract interfaces (Protocol classes) for the license tracker.

Defines the contracts between the service layer and the adapter layer using
Python's typing.Protocol. Services depend on these protocols, never on
concrete adapter implementations, so they can be tested with mocks.

Protocols defined:
- IEventProcessor
- IEventSource
- IInventorySource
- IResourceLookup
- IReportSink
"""

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from license_tracker.events.model import InstanceEvent
from license_tracker.history.configuration import ImageReference
from license_tracker.history.instance_set import EventOrder
from license_tracker.inventory import Disk, Image, Instance, MachineType, SoleTenantNode
from license_tracker.locators import MachineTypeLocator


class IEventProcessor(Protocol):
    """Consumer of a stream of instance events."""

    @property
    def expected_order(self) -> EventOrder:
        """Order in which events must be delivered."""
        ...

    @property
    def supported_severities(self) -> Sequence[str]:
        """Log severities worth delivering."""
        ...

    @property
    def supported_methods(self) -> Sequence[str]:
        """Audit log method names worth delivering."""
        ...

    def process(self, event: InstanceEvent) -> None:
        """Process a single event."""
        ...


class IEventSource(Protocol):
    """Producer of audit log events."""

    async def process_instance_events(
        self,
        project_ids: Sequence[str],
        start_time: datetime,
        processor: IEventProcessor,
    ) -> None:
        """Deliver all events since start_time to a processor.

        Events are filtered by the processor's supported methods and
        severities and delivered in the processor's expected order.

        Args:
            project_ids: Projects whose audit logs to read.
            start_time: Earliest event timestamp (exclusive).
            processor: Receives the events.

        Raises:
            AccessDeniedError: If the logs of a project are inaccessible.
        """
        ...


class IInventorySource(Protocol):
    """Producer of inventory snapshots."""

    async def list_instances(self, project_id: str) -> list[Instance]:
        """List all instances of a project across zones."""
        ...

    async def list_disks(self, project_id: str) -> list[Disk]:
        """List all disks of a project across zones."""
        ...

    async def list_nodes(self, project_id: str) -> list[SoleTenantNode]:
        """List all sole-tenant nodes of a project across node groups."""
        ...


class IResourceLookup(Protocol):
    """Point lookups of images and machine types."""

    async def get_image(self, image: ImageReference) -> Image:
        """Read an image, resolving image families to their current image.

        Raises:
            NotFoundError: If the image does not exist.
            AccessDeniedError: If the image is inaccessible.
        """
        ...

    async def get_machine_type(self, machine_type: MachineTypeLocator) -> MachineType:
        """Read a machine type.

        Raises:
            NotFoundError: If the machine type does not exist.
            AccessDeniedError: If the machine type is inaccessible.
        """
        ...


class IReportSink(Protocol):
    """Tabular storage for report rows."""

    async def prepare(self) -> None:
        """Create missing tables."""
        ...

    async def insert_rows(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Append rows to a table."""
        ...

    async def get_last_run_date(self) -> datetime | None:
        """Return the date of the newest analysis run, if any."""
        ...
