"""Exponential backoff for Google API calls.

Google APIs answer with HTTP 429 when a quota is exhausted and occasionally
with 5xx errors under load. Such requests are retried after a delay that
doubles with every attempt, up to a bounded number of retries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from license_tracker.observability import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class BackoffSchedule:
    initial_delay_ms: int = 100
    max_delay_ms: int = 30_000
    max_retries: int = 10

    def delays(self) -> tuple[int, ...]:
        """Delays (in milliseconds) to wait before each retry."""
        delays: list[int] = []
        delay = self.initial_delay_ms
        for _ in range(self.max_retries):
            delays.append(delay)
            delay = min(delay * 2, self.max_delay_ms)
        return tuple(delays)


async def send_with_backoff(
    send: Callable[[], Awaitable[httpx.Response]],
    schedule: BackoffSchedule,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """Send a request, retrying rate-limited and transient failures.

    Args:
        send: Sends the request; called once per attempt.
        schedule: Backoff schedule.
        sleep: Async sleep function, injectable for tests.

    Returns:
        The first response that is not retryable, or the last response once
        all retries are exhausted.
    """
    response = await send()
    for delay_ms in schedule.delays():
        if response.status_code not in RETRYABLE_STATUS_CODES:
            return response

        logger.debug(
            "Retrying request after backoff",
            url=str(response.request.url),
            status_code=response.status_code,
            delay_ms=delay_ms,
        )
        await sleep(delay_ms / 1000.0)
        response = await send()

    return response
