"""Shared HTTP transport for Google REST APIs.

Wraps an httpx.AsyncClient with bearer-token authentication, exponential
backoff for rate-limited and transient responses, and translation of error
responses into license tracker errors:

- 403 -> AccessDeniedError
- 404 -> NotFoundError
- any other non-2xx -> ApiError
"""

from typing import Any

import httpx

from license_tracker.adapters.retry import BackoffSchedule, send_with_backoff
from license_tracker.errors import AccessDeniedError, ApiError, NotFoundError
from license_tracker.observability import get_logger

logger = get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Extract the error message from a Google API error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class GoogleApiClient:
    """Base class for Google REST API adapters.

    Args:
        base_url: API base URL, e.g. https://compute.googleapis.com/compute/v1.
        access_token: OAuth bearer token. Empty to send unauthenticated requests.
        timeout_seconds: Timeout for a single request.
        backoff: Retry schedule for rate-limited and transient responses.
        client: Optional pre-configured httpx client (used by tests). When
            omitted, a client is created per request.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str = "",
        timeout_seconds: float = 30.0,
        backoff: BackoffSchedule | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout_seconds = timeout_seconds
        self._backoff = backoff or BackoffSchedule()
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        return await send_with_backoff(
            lambda: client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers(),
            ),
            self._backoff,
        )

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON response.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            params: Optional query parameters.
            json_body: Optional JSON request body.

        Returns:
            The decoded response body.

        Raises:
            AccessDeniedError: On HTTP 403.
            NotFoundError: On HTTP 404.
            ApiError: On any other error response, or if the API is unreachable.
        """
        url = f"{self._base_url}/{path.lstrip('/')}"

        try:
            if self._client is not None:
                response = await self._send(self._client, method, url, params, json_body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await self._send(client, method, url, params, json_body)
        except httpx.TimeoutException as exc:
            raise ApiError(f"Request to {url} timed out") from exc
        except httpx.RequestError as exc:
            raise ApiError(f"Request to {url} failed: {exc}") from exc

        if response.is_success:
            return response.json() if response.content else {}

        message = _error_message(response)
        if response.status_code == 403:
            raise AccessDeniedError(message, status_code=403)
        if response.status_code == 404:
            raise NotFoundError(message, status_code=404)

        logger.error(
            "Google API request failed",
            url=url,
            status_code=response.status_code,
            error=message,
        )
        raise ApiError(message, status_code=response.status_code)
