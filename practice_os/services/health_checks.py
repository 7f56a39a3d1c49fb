"""Health probes — one function per monitored service.

I/O probes (database, market data) are coroutines; configuration checks
(email, auth) are plain functions that only inspect settings. Every probe
returns a ``ProbeResult`` on success and raises on failure — the monitor
owns the error counting.
"""

from __future__ import annotations

import asyncio
import time
from typing import NamedTuple

import httpx

from practice_os.config import settings
from practice_os.database import get_db, reset_connection
from practice_os.models.health import ServiceState
from practice_os.services.market_data import resolve_provider

SLOW_DB_MS = 1000
MARKET_DATA_TIMEOUT_SECONDS = 5.0


class ProbeResult(NamedTuple):
    status: ServiceState
    message: str
    latency: float | None = None  # milliseconds


class ProbeError(Exception):
    """A probe reached its service but the answer was bad."""


class ProbeTimeout(ProbeError):
    """A probe gave up waiting."""

    def __init__(self, message: str = "Timeout") -> None:
        super().__init__(message)


def _ping() -> None:
    get_db().execute("SELECT 1").fetchone()


async def check_database() -> ProbeResult:
    """Round-trip a trivial query; slow answers are a warning."""
    start = time.perf_counter()
    await asyncio.to_thread(_ping)
    latency = (time.perf_counter() - start) * 1000
    if latency > SLOW_DB_MS:
        return ProbeResult("warning", f"Slow: {latency:.0f}ms", latency)
    return ProbeResult("ok", "Connected", latency)


async def reconnect_database() -> None:
    """Drop the connection and prove a fresh one answers."""
    await asyncio.to_thread(reset_connection)
    await asyncio.to_thread(_ping)


async def check_market_data(
    timeout: float = MARKET_DATA_TIMEOUT_SECONDS,
) -> ProbeResult:
    """Fetch a canary quote; the free fallback only rates a warning.

    ``timeout`` bounds the whole request, not each read, so a server
    trickling bytes still times out.
    """
    provider = resolve_provider()
    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await asyncio.wait_for(client.get(provider.url), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise ProbeTimeout() from exc
    latency = (time.perf_counter() - start) * 1000

    if resp.status_code >= 400:
        msg = f"HTTP {resp.status_code}"
        raise ProbeError(msg)
    return ProbeResult("ok" if provider.keyed else "warning", provider.name, latency)


def check_email_config() -> ProbeResult:
    if settings.EMAIL_CONFIGURED:
        return ProbeResult("ok", "Configured")
    return ProbeResult("warning", "Not configured")


def check_auth_config() -> ProbeResult:
    if settings.AUTH_CONFIGURED:
        return ProbeResult("ok", "Configured")
    return ProbeResult("warning", "Not configured")
