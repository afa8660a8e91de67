"""Locators for Compute Engine resources.

A locator identifies a resource by its project (and zone, for zonal
resources) plus its name. Locators are immutable and hashable so they can be
used as dictionary keys, e.g. when joining images to licenses.

Resource references appear in three shapes in API responses and audit logs:

- relative:  projects/my-project/zones/us-central1-a/instances/vm-1
- v1 URL:    https://compute.googleapis.com/compute/v1/projects/...
- legacy:    https://www.googleapis.com/compute/v1/projects/...

Every from_string() accepts all three, as well as beta API URLs.
"""

from __future__ import annotations

from dataclasses import dataclass

_URL_PREFIXES = (
    "https://compute.googleapis.com/compute/v1/",
    "https://www.googleapis.com/compute/v1/",
    "https://compute.googleapis.com/compute/beta/",
    "https://www.googleapis.com/compute/beta/",
)

_WINDOWS_PROJECT = "windows-cloud"


def _strip_prefix(reference: str) -> str:
    """Remove a Compute API URL prefix from a resource reference.

    Args:
        reference: A relative resource name or a full resource URL.

    Returns:
        The relative resource name.
    """
    for prefix in _URL_PREFIXES:
        if reference.startswith(prefix):
            return reference[len(prefix):]
    return reference


def _split_zonal(reference: str, collection: str) -> tuple[str, str, str]:
    """Parse projects/{project}/zones/{zone}/{collection}/{name}.

    Raises:
        ValueError: If the reference does not match the expected shape.
    """
    parts = _strip_prefix(reference).split("/")
    if (
        len(parts) == 6
        and parts[0] == "projects"
        and parts[2] == "zones"
        and parts[4] == collection
        and all(parts[i] for i in (1, 3, 5))
    ):
        return parts[1], parts[3], parts[5]
    raise ValueError(f"'{reference}' is not a valid {collection} reference")


def last_path_segment(url: str) -> str:
    """Return the trailing segment of a URL, e.g. the zone name of a zone URL."""
    return url.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class ProjectLocator:
    """A Cloud project."""

    project_id: str

    @classmethod
    def from_string(cls, reference: str) -> ProjectLocator:
        parts = _strip_prefix(reference).split("/")
        if len(parts) == 2 and parts[0] == "projects" and parts[1]:
            return cls(parts[1])
        raise ValueError(f"'{reference}' is not a valid project reference")

    def __str__(self) -> str:
        return f"projects/{self.project_id}"


@dataclass(frozen=True)
class InstanceLocator:
    """A VM instance, identified by project, zone and name."""

    project_id: str
    zone: str
    name: str

    @classmethod
    def from_string(cls, reference: str) -> InstanceLocator:
        return cls(*_split_zonal(reference, "instances"))

    def __str__(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/instances/{self.name}"


@dataclass(frozen=True)
class MachineTypeLocator:
    """A machine type such as n2-standard-4.

    Audit logs sometimes use "-" as the project ID.
    """

    project_id: str
    zone: str
    name: str

    @classmethod
    def from_string(cls, reference: str) -> MachineTypeLocator:
        return cls(*_split_zonal(reference, "machineTypes"))

    def __str__(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/machineTypes/{self.name}"


@dataclass(frozen=True)
class NodeTypeLocator:
    """A sole-tenant node type such as n1-node-96-624."""

    project_id: str
    zone: str
    name: str

    @classmethod
    def from_string(cls, reference: str) -> NodeTypeLocator:
        return cls(*_split_zonal(reference, "nodeTypes"))

    def __str__(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/nodeTypes/{self.name}"


@dataclass(frozen=True)
class ImageLocator:
    """A global image, or an image family (name is then "family/<family>")."""

    project_id: str
    name: str

    @property
    def is_family(self) -> bool:
        return self.name.startswith("family/")

    @classmethod
    def from_string(cls, reference: str) -> ImageLocator:
        parts = _strip_prefix(reference).split("/")
        if len(parts) >= 5 and parts[0] == "projects" and parts[2:4] == ["global", "images"]:
            name = "/".join(parts[4:])
            if parts[1] and name and (len(parts) == 5 or (len(parts) == 6 and parts[4] == "family")):
                return cls(parts[1], name)
        raise ValueError(f"'{reference}' is not a valid image reference")

    def __str__(self) -> str:
        return f"projects/{self.project_id}/global/images/{self.name}"


@dataclass(frozen=True)
class ImageFamilyViewLocator:
    """A zonal image family view.

    Insert requests may use "-" as the zone to mean "the instance's zone".
    """

    project_id: str
    zone: str
    name: str

    @classmethod
    def from_string(cls, reference: str, default_zone: str | None = None) -> ImageFamilyViewLocator:
        project_id, zone, name = _split_zonal(reference, "imageFamilyViews")
        if zone == "-" and default_zone:
            zone = default_zone
        return cls(project_id, zone, name)

    def __str__(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/imageFamilyViews/{self.name}"


def image_from_string(
    reference: str,
    default_zone: str | None = None,
) -> ImageLocator | ImageFamilyViewLocator:
    """Parse a source image reference as found in instance insert requests.

    The reference may denote a specific global image, a global image family,
    or a zonal image family view.

    Args:
        reference: Source image reference.
        default_zone: Zone substituted for "-" in image family views.

    Returns:
        The matching locator.

    Raises:
        ValueError: If the reference is malformed.
    """
    if "/imageFamilyViews/" in reference:
        return ImageFamilyViewLocator.from_string(reference, default_zone)
    return ImageLocator.from_string(reference)


@dataclass(frozen=True)
class LicenseLocator:
    """A license attached to an image, e.g. windows-cloud/windows-2019."""

    project_id: str
    name: str

    @property
    def is_windows_license(self) -> bool:
        return self.project_id == _WINDOWS_PROJECT

    @property
    def is_windows_byol_license(self) -> bool:
        return self.is_windows_license and self.name.endswith("-byol")

    @classmethod
    def from_string(cls, reference: str) -> LicenseLocator:
        parts = _strip_prefix(reference).split("/")
        if (
            len(parts) == 5
            and parts[0] == "projects"
            and parts[2:4] == ["global", "licenses"]
            and parts[1]
            and parts[4]
        ):
            return cls(parts[1], parts[4])
        raise ValueError(f"'{reference}' is not a valid license reference")

    def __str__(self) -> str:
        return f"projects/{self.project_id}/global/licenses/{self.name}"
