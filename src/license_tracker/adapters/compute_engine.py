"""Compute Engine adapter for inventory snapshots and resource lookups.

Implements IInventorySource (instances, disks and sole-tenant nodes of a
project) and IResourceLookup (images and machine types) against the
Compute Engine REST API. Listings use the aggregated endpoints so that a
single paginated query covers all zones of a project.

Compute Engine API reference: https://cloud.google.com/compute/docs/reference/rest/v1
"""

from collections.abc import AsyncIterator
from typing import Any

from license_tracker.adapters.google_api import GoogleApiClient
from license_tracker.history.configuration import ImageReference
from license_tracker.inventory import Disk, Image, Instance, MachineType, SoleTenantNode
from license_tracker.locators import ImageFamilyViewLocator, MachineTypeLocator, last_path_segment
from license_tracker.observability import get_logger

logger = get_logger(__name__)


class ComputeEngineAdapter(GoogleApiClient):
    """Reads instances, disks, nodes, images and machine types."""

    async def _pages(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield all pages of a list response, following nextPageToken."""
        page_params = dict(params or {})
        while True:
            page = await self.request(method, path, params=page_params)
            yield page
            page_token = page.get("nextPageToken")
            if not page_token:
                return
            page_params["pageToken"] = page_token

    async def _aggregated(self, project_id: str, collection: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Yield (zone, resource) pairs of an aggregated list across all zones."""
        async for page in self._pages("GET", f"projects/{project_id}/aggregated/{collection}"):
            for scope, scoped_list in page.get("items", {}).items():
                zone = last_path_segment(scope)
                for resource in scoped_list.get(collection, []):
                    yield zone, resource

    async def list_instances(self, project_id: str) -> list[Instance]:
        instances = [
            Instance.model_validate(resource)
            async for _, resource in self._aggregated(project_id, "instances")
        ]
        logger.debug("Listed instances", project_id=project_id, count=len(instances))
        return instances

    async def list_disks(self, project_id: str) -> list[Disk]:
        disks = [
            Disk.model_validate(resource)
            async for _, resource in self._aggregated(project_id, "disks")
        ]
        logger.debug("Listed disks", project_id=project_id, count=len(disks))
        return disks

    async def list_nodes(self, project_id: str) -> list[SoleTenantNode]:
        """List the nodes of all sole-tenant node groups of a project.

        Nodes do not carry their project and zone, so both are filled in from
        the node group they belong to.
        """
        node_groups = [
            (zone, resource["name"])
            async for zone, resource in self._aggregated(project_id, "nodeGroups")
            if resource.get("name")
        ]

        nodes: list[SoleTenantNode] = []
        for zone, group_name in node_groups:
            path = f"projects/{project_id}/zones/{zone}/nodeGroups/{group_name}/listNodes"
            async for page in self._pages("POST", path):
                for resource in page.get("items", []):
                    nodes.append(
                        SoleTenantNode.model_validate(
                            {**resource, "project_id": project_id, "zone": zone}
                        )
                    )

        logger.debug(
            "Listed sole-tenant nodes",
            project_id=project_id,
            node_group_count=len(node_groups),
            count=len(nodes),
        )
        return nodes

    async def get_image(self, image: ImageReference) -> Image:
        """Read an image.

        Global image families resolve to the family's newest image; zonal
        image family views resolve to the image they currently point to.
        """
        if isinstance(image, ImageFamilyViewLocator):
            view = await self.request("GET", str(image))
            return Image.model_validate(view.get("image", {}))
        return Image.model_validate(await self.request("GET", str(image)))

    async def get_machine_type(self, machine_type: MachineTypeLocator) -> MachineType:
        return MachineType.model_validate(await self.request("GET", str(machine_type)))
