"""Test fixtures for license-tracker.

Provides:
- report_start / report_end: A fixed analysis window in December 2019
- sample_reference: An InstanceLocator for a test instance
- sample_node_type: A sole-tenant NodeTypeLocator
- sample_image: A global ImageLocator
- sample_machine_type: A MachineTypeLocator
- mock_inventory: A mock IInventorySource with empty listings
- mock_event_source: A mock IEventSource that delivers no events
- mock_resources: A mock IResourceLookup
- mock_sink: A mock IReportSink that captures insert_rows() calls
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from license_tracker.locators import ImageLocator, InstanceLocator, MachineTypeLocator, NodeTypeLocator


@pytest.fixture()
def report_start() -> datetime:
    """Return the start of the test analysis window."""
    return datetime(2019, 12, 1, tzinfo=UTC)


@pytest.fixture()
def report_end() -> datetime:
    """Return the end of the test analysis window."""
    return datetime(2020, 1, 1, tzinfo=UTC)


@pytest.fixture()
def sample_reference() -> InstanceLocator:
    return InstanceLocator("project-1", "us-central1-a", "instance-1")


@pytest.fixture()
def sample_node_type() -> NodeTypeLocator:
    return NodeTypeLocator.from_string("projects/project-1/zones/us-central1-a/nodeTypes/c2-node-60-240")


@pytest.fixture()
def sample_image() -> ImageLocator:
    return ImageLocator.from_string("projects/project-1/global/images/image-1")


@pytest.fixture()
def sample_machine_type() -> MachineTypeLocator:
    return MachineTypeLocator.from_string("projects/project-1/zones/us-central1-a/machineTypes/e2-medium")


@pytest.fixture()
def mock_inventory() -> AsyncMock:
    """Create a mock inventory source with an empty project.

    Returns:
        AsyncMock whose list_* methods return empty lists.
    """
    inventory = AsyncMock()
    inventory.list_instances.return_value = []
    inventory.list_disks.return_value = []
    inventory.list_nodes.return_value = []
    return inventory


@pytest.fixture()
def mock_event_source() -> AsyncMock:
    """Create a mock event source that delivers no events.

    Tests that need events set a side_effect that calls processor.process().
    """
    source = AsyncMock()
    source.process_instance_events.return_value = None
    return source


@pytest.fixture()
def mock_resources() -> AsyncMock:
    """Create a mock resource lookup adapter."""
    return AsyncMock()


@pytest.fixture()
def mock_sink() -> AsyncMock:
    """Create a mock report sink that captures all calls.

    Returns:
        AsyncMock with get_last_run_date returning None.
    """
    sink = AsyncMock()
    sink.prepare.return_value = None
    sink.insert_rows.return_value = None
    sink.get_last_run_date.return_value = None
    return sink
