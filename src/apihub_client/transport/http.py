"""Resilient HTTP transport for gateway calls.

Every attempt opens the response in streaming mode and returns as soon as the
status line and headers arrive. Retries therefore only ever happen before the
first body byte is consumed by a caller.
"""
from __future__ import annotations
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

from apihub_client.common.config import GatewayConfig, RetryPolicy
from apihub_client.common.errors import TransportError

LOGGER = logging.getLogger("apihub.transport")

RETRYABLE_STATUSES = frozenset({429}) | frozenset(range(500, 600))


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUSES


def backoff_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: random.Random,
    retry_after_s: float | None = None,
) -> float:
    """
    Seconds to wait after a failed attempt.

    Exponential in the attempt number, capped at max_delay_ms, with jitter drawn
    from the upper half of the window. A Retry-After hint below the cap is a
    floor for the delay; a hint at or above the cap widens the window to the
    cap and is jittered like any other delay.

    Args:
        policy: Retry settings.
        attempt: 1-based number of the attempt that just failed.
        rng: Random source.
        retry_after_s: Server hint from a Retry-After header, if any.
    """
    ceiling = min(policy.max_delay_ms, policy.base_delay_ms * (2 ** (attempt - 1)))
    floor = ceiling / 2
    if retry_after_s is not None:
        hinted = retry_after_s * 1000.0
        if hinted < policy.max_delay_ms:
            ceiling = max(ceiling, hinted)
            floor = max(floor, hinted)
        else:
            ceiling = policy.max_delay_ms
            floor = ceiling / 2
    return rng.uniform(floor, ceiling) / 1000.0


def body_read_error(error: httpx.HTTPError, status_code: int | None = None) -> TransportError:
    """Failure after the status line arrived. Never retried: body bytes may already be consumed."""
    return TransportError(
        f"Reading response body failed: {error.__class__.__name__}: {error}",
        attempts=1,
        status_code=status_code,
    )


def _retry_after_s(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class ResilientTransport:
    """
    httpx.AsyncClient wrapper with bounded retry on network errors, 429 and 5xx.

    Args:
        config: Process configuration (timeout and retry policy).
        client: Optional pre-built client, e.g. one using httpx.MockTransport.
        sleep: Awaitable sleep, replaceable in tests.
        rng: Random source for jitter.
    """

    def __init__(
        self,
        config: GatewayConfig,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config
        self.policy = config.retry
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout_s))
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def __aenter__(self) -> "ResilientTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _wait(self, attempt: int, response: httpx.Response | None) -> None:
        hinted = None
        if response is not None and response.status_code in (429, 503):
            hinted = _retry_after_s(response)
        delay = backoff_delay(self.policy, attempt, self._rng, hinted)
        LOGGER.warning(
            "Attempt %s/%s failed; retrying in %.2fs",
            attempt,
            self.policy.max_attempts,
            delay,
        )
        await self._sleep(delay)

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Send a request and return the open (unread) response on a 2xx/3xx status.

        Callers own the returned response and must read or close it.

        Raises:
            TransportError: non-retryable 4xx, or retries exhausted.
        """
        max_attempts = self.policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            request = self._client.build_request(
                method,
                url,
                headers=headers,
                json=json,
                timeout=self.config.timeout_s,
            )
            try:
                response = await self._client.send(request, stream=True)
            except httpx.TransportError as e:
                LOGGER.debug("Network failure on %s %s: %r", method, url, e)
                if attempt >= max_attempts:
                    raise TransportError(
                        f"Request to {url} failed: {e.__class__.__name__}: {e}",
                        attempts=attempt,
                    ) from e
                await self._wait(attempt, None)
                continue

            if response.is_success or response.is_redirect:
                return response

            try:
                await response.aread()
                body = response.text
            except httpx.HTTPError:
                body = ""
            finally:
                await response.aclose()

            if not is_retryable_status(response.status_code) or attempt >= max_attempts:
                raise TransportError(
                    f"API Hub request failed: {response.status_code} {body}",
                    attempts=attempt,
                    status_code=response.status_code,
                    body=body,
                )
            await self._wait(attempt, response)

        # max_attempts >= 1 is enforced by RetryPolicy
        raise AssertionError("unreachable")

    async def fetch(self, url: str) -> httpx.Response:
        """Single unauthenticated GET, returned open and unchecked. Network errors propagate."""
        request = self._client.build_request("GET", url, timeout=self.config.timeout_s)
        return await self._client.send(request, stream=True, follow_redirects=True)
