# courier_dispatch/infra/http_client.py
"""
Shared HTTP client sessions for the application.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **gateway** – delivery quote/dispatch calls (timeouts from settings, pool limit=10)
- **default** – order polling and other backend reads (total=30 s, connect=5 s, pool limit=10)

A hung delivery call is bounded only by the gateway timeout; the
dispatch orchestrator has no cancellation of its own.

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from courier_dispatch.config import settings
from courier_dispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_gateway_session() -> aiohttp.ClientSession:
    """Session for delivery provider calls (quote, dispatch, status)."""
    return _get_or_create(
        "gateway",
        aiohttp.ClientTimeout(
            total=settings.gateway_timeout_seconds,
            connect=settings.gateway_connect_timeout_seconds,
        ),
        limit=10,
    )


def get_default_session() -> aiohttp.ClientSession:
    """General-purpose session (order polling, etc.)."""
    return _get_or_create(
        "default",
        aiohttp.ClientTimeout(total=30, connect=5),
        limit=10,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
