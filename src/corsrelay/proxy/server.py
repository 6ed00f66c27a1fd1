"""
cors-relay HTTP server.

Routes:
  GET /        -> usage text
  * /{target}  -> proxy pipeline (GET /https://example.com/page?x=1)

One httpx.AsyncClient is created at application startup and shared by all
requests for connection pooling. It is closed on application cleanup.
"""

import asyncio
import functools
import signal
import uuid
from collections.abc import AsyncIterator

import httpx
from aiohttp import web

from corsrelay.proxy.errors import USAGE
from corsrelay.proxy.pipeline import proxy
from corsrelay.utils.config import Settings, UpstreamConfig, get_settings
from corsrelay.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

SETTINGS_KEY = web.AppKey("settings", Settings)
UPSTREAM_CLIENT_KEY = web.AppKey("upstream_client", httpx.AsyncClient)


def create_upstream_client(config: UpstreamConfig) -> httpx.AsyncClient:
    """
    Create the shared outbound client.

    Redirects are not followed; 3xx responses are relayed to the caller.

    Args:
        config: Upstream timeouts and pool limits.

    Returns:
        Unopened async client.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=config.connect_timeout,
            read=config.read_timeout,
            write=config.write_timeout,
            pool=config.pool_timeout,
        ),
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_keepalive_connections,
        ),
        follow_redirects=False,
    )


async def upstream_client_ctx(app: web.Application) -> AsyncIterator[None]:
    """Open the shared outbound client for the lifetime of the app."""
    settings = app[SETTINGS_KEY]
    async with create_upstream_client(settings.upstream) as client:
        app[UPSTREAM_CLIENT_KEY] = client
        logger.debug(
            "Upstream client opened",
            max_connections=settings.upstream.max_connections,
        )
        yield
    logger.debug("Upstream client closed")


async def handle_usage(request: web.Request) -> web.Response:
    """Usage text for the bare root."""
    return web.Response(text=USAGE)


async def handle_proxy(request: web.Request) -> web.StreamResponse:
    """Proxy any other path, for any method."""
    client = request.app[UPSTREAM_CLIENT_KEY]
    chunk_size = request.app[SETTINGS_KEY].upstream.chunk_size

    with LogContext(request_id=uuid.uuid4().hex[:12], method=request.method):
        return await proxy(request, client, chunk_size=chunk_size)


def create_app(
    settings: Settings | None = None,
    upstream_client: httpx.AsyncClient | None = None,
) -> web.Application:
    """
    Create aiohttp application.

    Args:
        settings: Settings to use. Loaded with get_settings() if None.
        upstream_client: Outbound client to use instead of creating one.
            The caller keeps ownership and must close it.

    Returns:
        Configured application.
    """
    app = web.Application()
    app[SETTINGS_KEY] = settings or get_settings()

    if upstream_client is not None:
        app[UPSTREAM_CLIENT_KEY] = upstream_client
    else:
        app.cleanup_ctx.append(upstream_client_ctx)

    # GET only: other methods on "/" fall through to the proxy's method gate
    app.router.add_route("GET", "/", handle_usage)
    app.router.add_route("*", "/{target:.*}", handle_proxy)

    return app


async def serve(settings: Settings) -> None:
    """Run the proxy server until SIGINT or SIGTERM."""
    app = create_app(settings)

    # Cancel the handler (and with it the upstream fetch) when a client goes away
    runner = web.AppRunner(
        app,
        handler_cancellation=True,
        shutdown_timeout=settings.server.shutdown_timeout,
    )
    await runner.setup()

    site = web.TCPSite(runner, settings.server.host, settings.server.port)
    await site.start()

    print(f"Listening on port {settings.server.port}", flush=True)
    logger.info(
        "Proxy server started",
        host=settings.server.host,
        port=settings.server.port,
        version=settings.general.version,
    )

    stop_event = asyncio.Event()

    def handle_signal(sig: int) -> None:
        logger.info("Received shutdown signal", signal=sig)
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, functools.partial(handle_signal, sig))

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down proxy server")
        await runner.cleanup()
