from __future__ import annotations

import random

import httpx
import pytest

from apihub_client.common.config import GatewayConfig, RetryPolicy
from apihub_client.common.errors import TransportError
from apihub_client.transport.http import backoff_delay, is_retryable_status

URL = "https://gateway.test/v1/run"


class _Script:
    """Handler that replays a scripted list of responses/exceptions and counts calls."""

    def __init__(self, *steps) -> None:  # noqa: ANN002
        self.steps = list(steps)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("boom", request=request)
        # fresh copy so a repeated step is never an already-consumed response
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)


@pytest.mark.asyncio
async def test_success_after_two_transient_failures(make_transport, sleeps) -> None:
    handler = _Script(
        httpx.Response(503, text="busy"),
        httpx.ConnectError,
        httpx.Response(200, json={"ok": True}),
    )
    transport = make_transport(handler)

    response = await transport.send("POST", URL, json={"x": 1})
    await response.aread()

    assert response.json() == {"ok": True}
    assert handler.calls == 3
    assert len(sleeps.delays) == 2


@pytest.mark.asyncio
async def test_exhaustion_raises_after_exactly_max_attempts(make_transport) -> None:
    handler = _Script(httpx.Response(500, text="down"))
    transport = make_transport(handler)

    with pytest.raises(TransportError) as info:
        await transport.send("POST", URL)

    assert handler.calls == 3
    assert info.value.attempts == 3
    assert info.value.status_code == 500
    assert "3 attempts" in str(info.value)


@pytest.mark.asyncio
async def test_network_failure_exhaustion_keeps_cause(make_transport) -> None:
    handler = _Script(httpx.ReadTimeout)
    transport = make_transport(handler)

    with pytest.raises(TransportError) as info:
        await transport.send("POST", URL)

    assert handler.calls == 3
    assert isinstance(info.value.__cause__, httpx.ReadTimeout)
    assert info.value.status_code is None


@pytest.mark.asyncio
async def test_client_error_is_not_retried(make_transport, sleeps) -> None:
    handler = _Script(httpx.Response(401, text="bad key"))
    transport = make_transport(handler)

    with pytest.raises(TransportError) as info:
        await transport.send("POST", URL)

    assert handler.calls == 1
    assert sleeps.delays == []
    assert info.value.status_code == 401
    assert "bad key" in str(info.value)


@pytest.mark.asyncio
async def test_429_is_retried(make_transport) -> None:
    handler = _Script(httpx.Response(429), httpx.Response(200, text="{}"))
    transport = make_transport(handler)

    response = await transport.send("GET", URL)

    assert response.status_code == 200
    assert handler.calls == 2
    await response.aclose()


@pytest.mark.asyncio
async def test_retry_after_header_raises_delay(make_transport, sleeps) -> None:
    handler = _Script(
        httpx.Response(429, headers={"Retry-After": "0.9"}),
        httpx.Response(200),
    )
    transport = make_transport(handler)

    response = await transport.send("GET", URL)
    await response.aclose()

    assert sleeps.delays == [pytest.approx(0.9)]


@pytest.mark.asyncio
async def test_retry_after_beyond_cap_is_capped_then_jittered(make_transport, sleeps) -> None:
    handler = _Script(
        httpx.Response(429, headers={"Retry-After": "60"}),
        httpx.Response(429, headers={"Retry-After": "60"}),
        httpx.Response(200),
    )
    transport = make_transport(handler)

    response = await transport.send("POST", URL)
    await response.aclose()

    assert len(sleeps.delays) == 2
    assert all(0.5 <= d <= 1.0 for d in sleeps.delays)
    assert sleeps.delays[0] != sleeps.delays[1]


def test_backoff_with_oversized_hint_varies() -> None:
    policy = RetryPolicy(max_attempts=5, base_delay_ms=100, max_delay_ms=1000)
    rng = random.Random(3)
    delays = [backoff_delay(policy, 1, rng, retry_after_s=60) for _ in range(5)]

    assert all(0.5 <= d <= 1.0 for d in delays)
    assert len(set(delays)) == len(delays)


def test_backoff_hint_under_cap_is_a_floor() -> None:
    policy = RetryPolicy(max_attempts=5, base_delay_ms=100, max_delay_ms=1000)
    rng = random.Random(3)
    assert backoff_delay(policy, 1, rng, retry_after_s=0.4) == pytest.approx(0.4)
    assert 0.5 <= backoff_delay(policy, 5, rng, retry_after_s=0.4) <= 1.0


@pytest.mark.asyncio
async def test_single_attempt_policy(make_transport, config) -> None:
    cfg = config.model_copy(update={"retry": RetryPolicy(max_attempts=1)})
    handler = _Script(httpx.Response(502))
    transport = make_transport(handler, cfg)

    with pytest.raises(TransportError) as info:
        await transport.send("POST", URL)

    assert handler.calls == 1
    assert info.value.attempts == 1


@pytest.mark.asyncio
async def test_fetch_is_unauthenticated_and_unchecked(make_transport) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(404)

    transport = make_transport(handler)
    response = await transport.fetch("https://cdn.test/a.png")
    await response.aclose()

    assert response.status_code == 404
    assert len(seen) == 1
    assert "authorization" not in seen[0].headers


def test_retryable_statuses() -> None:
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(599)
    assert not is_retryable_status(400)
    assert not is_retryable_status(404)


def test_backoff_grows_and_is_capped() -> None:
    policy = RetryPolicy(max_attempts=10, base_delay_ms=100, max_delay_ms=1000)
    rng = random.Random(0)
    delays = [backoff_delay(policy, attempt, rng) for attempt in range(1, 8)]

    assert 0.05 <= delays[0] <= 0.1
    assert 0.1 <= delays[1] <= 0.2
    assert all(0.5 <= d <= 1.0 for d in delays[4:])
    assert all(a != b for a, b in zip(delays, delays[1:]))


def test_default_config_policy() -> None:
    policy = GatewayConfig().retry
    assert policy.max_attempts == 3
    assert policy.base_delay_ms <= policy.max_delay_ms
