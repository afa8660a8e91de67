"""Error types for the license tracker.

Adapters translate HTTP status codes from Google APIs into these errors so
that services can apply per-project and per-lookup fail-open policies
without inspecting raw responses:

- NotFoundError: the resource (image, machine type) no longer exists
- AccessDeniedError: the caller lacks permission on a project (HTTP 403)
- ValidationError: invalid caller input, e.g. a bad reporting window
- ApiError: any other unexpected non-2xx response
"""


class LicenseTrackerError(Exception):
    """Base error for license tracker failures.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the upstream API (if available).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize LicenseTrackerError.

        Args:
            message: Error description.
            status_code: Optional HTTP status code.
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(LicenseTrackerError):
    """Raised when a looked-up resource does not exist."""


class AccessDeniedError(LicenseTrackerError):
    """Raised when access to a project or resource is denied."""


class ValidationError(LicenseTrackerError):
    """Raised when caller-supplied input is invalid."""


class ApiError(LicenseTrackerError):
    """Raised when a Google API returns an unexpected error response."""
