"""Shared test fixtures for the LoadRamp test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from loadramp._internal.config import LoadRampConfig

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Test HTTP server handlers
# =============================================================================

HITS = web.AppKey("hits", dict)


def _count(request: web.Request, route: str) -> int:
    hits = request.app[HITS]
    hits[route] = hits.get(route, 0) + 1
    return hits[route]


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    _count(request, "echo")
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    _count(request, "delay")
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _status_handler(request: web.Request) -> web.Response:
    """Return a configurable status (query param: ?code=500)."""
    _count(request, "status")
    status = int(request.query.get("code", "500"))
    return web.json_response({"status": status}, status=status)


async def _flaky_handler(request: web.Request) -> web.Response:
    """Fail every fifth request with a 500 (exactly 20 % errors)."""
    n = _count(request, "flaky")
    if n % 5 == 0:
        return web.json_response({"error": True}, status=500)
    return web.json_response({"ok": True})


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    _count(request, "health")
    return web.json_response({"status": "ok"})


async def _login_handler(request: web.Request) -> web.Response:
    """Simulate a login endpoint that returns a token."""
    _count(request, "login")
    return web.json_response({"token": "test-token-12345"})


def _create_app() -> web.Application:
    """Build the test server app with all test routes."""
    app = web.Application()
    app[HITS] = {}
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/status", _status_handler)
    app.router.add_get("/flaky", _flaky_handler)
    app.router.add_get("/health", _health_handler)
    app.router.add_post("/auth/login", _login_handler)
    return app


class ServerInfo:
    """Base URL of a running test server plus its per-route hit counts."""

    def __init__(self, url: str, app: web.Application) -> None:
        self.url = url
        self._app = app

    def hits(self, route: str) -> int:
        return self._app[HITS].get(route, 0)

    @property
    def total_hits(self) -> int:
        return sum(self._app[HITS].values())


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def test_server() -> AsyncIterator[ServerInfo]:
    """In-process aiohttp server on a free port."""
    app = _create_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield ServerInfo(f"http://127.0.0.1:{port}", app)
    await runner.cleanup()


@pytest.fixture
async def server_url(test_server: ServerInfo) -> str:
    """Base URL of :func:`test_server`."""
    return test_server.url


@pytest.fixture
def fast_config() -> LoadRampConfig:
    """Engine configuration with short ticks for quick runs."""
    return LoadRampConfig(
        request_timeout=5.0,
        connection_pool_size=20,
        tick_interval=0.1,
        graceful_stop=1.0,
    )


# =============================================================================
# Sync fixtures for CLI tests
# =============================================================================


@pytest.fixture
def sync_server() -> Iterator[ServerInfo]:
    """Test server running in a background thread for sync tests.

    The CLI runs its own event loop via ``asyncio.run`` and blocks the main
    thread, so the server needs a loop of its own.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []
    app = _create_app()

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield ServerInfo(f"http://127.0.0.1:{port}", app)

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)
