"""Snapshot models of the current Compute Engine inventory.

These models mirror the subset of the Compute Engine API resources the
history builders need to seed existing instances: instances, disks and
sole-tenant nodes. They validate raw API JSON directly, so field aliases
follow the API's camelCase names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from license_tracker.locators import InstanceLocator, NodeTypeLocator, last_path_segment


class AttachedDisk(BaseModel):
    """A disk attached to an instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str | None = None
    boot: bool = False
    device_name: str | None = Field(default=None, alias="deviceName")


class NodeAffinity(BaseModel):
    """A node affinity label constraining where an instance may be scheduled."""

    model_config = ConfigDict(frozen=True)

    key: str | None = None
    operator: str | None = None
    values: list[str] = Field(default_factory=list)


class Scheduling(BaseModel):
    """Scheduling options of an instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    on_host_maintenance: str | None = Field(default=None, alias="onHostMaintenance")
    min_node_cpus: int | None = Field(default=None, alias="minNodeCpus")
    node_affinities: list[NodeAffinity] = Field(default_factory=list, alias="nodeAffinities")


class Instance(BaseModel):
    """A VM instance as returned by instances.list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    name: str
    zone: str = Field(..., description="Zone URL, e.g. .../zones/us-central1-a")
    status: str | None = None
    machine_type: str | None = Field(default=None, alias="machineType")
    disks: list[AttachedDisk] = Field(default_factory=list)
    scheduling: Scheduling = Field(default_factory=Scheduling)
    labels: dict[str, str] | None = None

    def locator(self, project_id: str) -> InstanceLocator:
        return InstanceLocator(project_id, last_path_segment(self.zone), self.name)

    @property
    def boot_disk(self) -> AttachedDisk | None:
        return next((disk for disk in self.disks if disk.boot), None)

    @property
    def is_sole_tenant(self) -> bool:
        """Sole-tenant instances are scheduled through node affinities."""
        return bool(self.scheduling.node_affinities)


class Disk(BaseModel):
    """A persistent disk as returned by disks.list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = None
    self_link: str = Field(..., alias="selfLink")
    source_image: str | None = Field(default=None, alias="sourceImage")


class SoleTenantNode(BaseModel):
    """A node of a sole-tenant node group.

    project_id and zone are not part of the API resource; the inventory
    source fills them in from the node group the node was listed from.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = None
    server_id: str | None = Field(default=None, alias="serverId")
    node_type: str | None = Field(default=None, alias="nodeType")
    instances: list[str] = Field(default_factory=list)
    project_id: str | None = None
    zone: str | None = None

    def node_type_locator(self) -> NodeTypeLocator | None:
        if not self.node_type:
            return None
        if "/" in self.node_type:
            return NodeTypeLocator.from_string(self.node_type)
        if not self.project_id or not self.zone:
            return None
        return NodeTypeLocator(self.project_id, self.zone, self.node_type)

    def hosts(self, instance: InstanceLocator) -> bool:
        """Check whether this node lists the given instance."""
        for uri in self.instances:
            try:
                if InstanceLocator.from_string(uri) == instance:
                    return True
            except ValueError:
                continue
        return False


class Image(BaseModel):
    """An image as returned by images.get."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = None
    family: str | None = None
    self_link: str | None = Field(default=None, alias="selfLink")
    licenses: list[str] = Field(default_factory=list)


class MachineType(BaseModel):
    """A machine type as returned by machineTypes.get."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = None
    guest_cpus: int | None = Field(default=None, alias="guestCpus")
    memory_mb: int | None = Field(default=None, alias="memoryMb")
