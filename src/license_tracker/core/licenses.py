"""License and machine classification.

Images carry a list of license URLs. Only Windows licenses matter for
attribution: a Windows license from the windows-cloud project denotes
pay-as-you-go (SPLA) usage unless its name marks it as BYOL.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from license_tracker.locators import LicenseLocator, MachineTypeLocator
from license_tracker.observability import get_logger

logger = get_logger(__name__)


class OperatingSystemType(str, Enum):
    UNKNOWN = "unknown"
    WINDOWS = "windows"
    LINUX = "linux"


class LicenseType(str, Enum):
    UNKNOWN = "unknown"
    BYOL = "byol"
    SPLA = "spla"


@dataclass(frozen=True)
class LicenseInfo:
    """Operating system and license model of an image."""

    license: LicenseLocator | None
    operating_system: OperatingSystemType
    license_type: LicenseType

    @classmethod
    def from_license(cls, license: LicenseLocator | None) -> LicenseInfo:
        """Classify a license.

        Args:
            license: The relevant license of an image, or None if the image
                has no license.

        Returns:
            The license info. Non-Windows licenses are assumed to be Linux.
        """
        if license is not None and license.is_windows_byol_license:
            return cls(license, OperatingSystemType.WINDOWS, LicenseType.BYOL)
        if license is not None and license.is_windows_license:
            return cls(license, OperatingSystemType.WINDOWS, LicenseType.SPLA)
        if license is not None:
            return cls(license, OperatingSystemType.LINUX, LicenseType.UNKNOWN)
        return cls(None, OperatingSystemType.UNKNOWN, LicenseType.UNKNOWN)


def select_relevant_license(license_urls: Iterable[str]) -> LicenseLocator | None:
    """Pick the license that determines how an image is licensed.

    Images can have several licenses, including unhelpful ones such as
    compute-image-tools/virtual-disk-import. Windows BYOL licenses take
    precedence over other Windows licenses, which take precedence over
    everything else.

    Args:
        license_urls: License URLs of an image.

    Returns:
        The relevant license, or None if the image has none.
    """
    locators: list[LicenseLocator] = []
    for url in license_urls:
        try:
            locators.append(LicenseLocator.from_string(url))
        except ValueError:
            logger.warning("Ignoring malformed license", license=url)

    for predicate in (
        lambda lic: lic.is_windows_byol_license,
        lambda lic: lic.is_windows_license,
    ):
        match = next((lic for lic in locators if predicate(lic)), None)
        if match is not None:
            return match

    return locators[0] if locators else None


@dataclass(frozen=True)
class MachineInfo:
    """Size of a machine type."""

    machine_type: MachineTypeLocator
    vcpu_count: int
    memory_mb: int
