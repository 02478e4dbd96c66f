from __future__ import annotations

import random
from typing import Callable

import httpx
import pytest

from apihub_client.common.config import GatewayConfig, RetryPolicy
from apihub_client.transport.http import ResilientTransport

BASE_URL = "https://gateway.test/v1"


class _Sleeps:
    """Records requested backoff delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(
        api_key="test-key",
        base_url=BASE_URL,
        timeout_s=5.0,
        retry=RetryPolicy(max_attempts=3, base_delay_ms=100, max_delay_ms=1000),
    )


@pytest.fixture
def sleeps() -> _Sleeps:
    return _Sleeps()


@pytest.fixture
def make_transport(config: GatewayConfig, sleeps: _Sleeps) -> Callable[..., ResilientTransport]:
    def _make(handler, cfg: GatewayConfig | None = None) -> ResilientTransport:  # noqa: ANN001
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ResilientTransport(cfg or config, client=client, sleep=sleeps, rng=random.Random(7))

    return _make


async def chunked(*parts: bytes):
    for part in parts:
        yield part


async def broken_after(*parts: bytes):
    """Body that delivers `parts`, then fails like a connection reset mid-read."""
    for part in parts:
        yield part
    raise httpx.ReadError("connection reset by peer")
