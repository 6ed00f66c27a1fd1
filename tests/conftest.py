"""
Pytest fixtures and configuration for cors-relay tests.

=============================================================================
Test Classification
=============================================================================

- @pytest.mark.unit: Single function/class, upstreams mocked with
  httpx.MockTransport or plain mocks. DEFAULT for unmarked tests.
- @pytest.mark.integration: Real sockets on 127.0.0.1 (aiohttp test
  servers as upstream, the real shared httpx client in the proxy).

Network access beyond the loopback interface is never required.

    pytest                    # everything
    pytest -m unit            # mocked only
    pytest -m integration     # loopback servers
"""

import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

# Set test environment before importing anything else
os.environ["CORSRELAY_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["CORSRELAY_GENERAL__LOG_LEVEL"] = "DEBUG"

from corsrelay.proxy.server import create_app  # noqa: E402
from corsrelay.utils.config import Settings, get_settings  # noqa: E402

UpstreamHandler = Callable[[httpx.Request], Awaitable[httpx.Response]]


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests with mocked upstreams")
    config.addinivalue_line("markers", "integration: Tests using loopback HTTP servers")


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit marker are unit tests."""
    for item in items:
        if not any(item.get_closest_marker(m) for m in ("unit", "integration")):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Upstream Simulation
# =============================================================================


def upstream_response(
    status_code: int = 200,
    content: bytes = b"",
    headers: list[tuple[str, str]] | dict[str, str] | None = None,
    *,
    chunk_size: int = 64 * 1024,
    chunked: bool = False,
) -> httpx.Response:
    """Build a response that streams its body like a real transport.

    httpx reads bytes content eagerly, which would leave nothing for
    aiter_raw(); an async generator keeps the body unread.
    """
    header_list = list(headers.items() if isinstance(headers, dict) else headers or [])
    if not chunked and not any(k.lower() == "content-length" for k, _ in header_list):
        header_list.append(("Content-Length", str(len(content))))

    async def body():
        for start in range(0, len(content), chunk_size):
            yield content[start : start + chunk_size]

    return httpx.Response(status_code, headers=header_list, content=body())


class MockUpstream:
    """Records outbound requests and answers them with a swappable handler.

    Default answer is 200 with body b"ok".
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: UpstreamHandler | None = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler is None:
            return upstream_response(200, b"ok")
        return await self.handler(request)

    @property
    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of environment and YAML files."""
    return Settings()


@pytest.fixture
def reset_settings_cache():
    """Clear the cached settings before and after the test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_response():
    """Factory for streaming upstream responses (see upstream_response)."""
    return upstream_response


@pytest.fixture
def mock_upstream() -> MockUpstream:
    """Programmable upstream behind httpx.MockTransport."""
    return MockUpstream()


@pytest_asyncio.fixture
async def upstream_client(mock_upstream):
    """Outbound client whose requests never leave the process."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(mock_upstream)) as client:
        yield client


@pytest_asyncio.fixture
async def proxy_client(settings, upstream_client):
    """aiohttp test client talking to the proxy app.

    Automatic decompression is off so tests see the bytes the proxy sent.
    """
    app = create_app(settings, upstream_client=upstream_client)
    async with TestClient(TestServer(app), auto_decompress=False) as client:
        yield client
