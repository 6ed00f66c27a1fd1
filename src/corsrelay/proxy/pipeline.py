"""
Request pipeline for cors-relay.

A proxied request moves through four stages:

    Received -> MethodChecked -> UriParsed -> Forwarded -> Streaming

Any stage may raise a ProxyError, which short-circuits the rest of the
pipeline into a plain-text error response. Nothing is retried.
"""

from enum import Enum

import httpx
from aiohttp import hdrs, web

from corsrelay.proxy.errors import (
    InternalServerError,
    MethodNotSupportedError,
    ProxyError,
    RequestError,
    UnableToParseUriError,
    create_error_response,
)
from corsrelay.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")

# Compared case-insensitively against upstream header names
BLOCKED_RESPONSE_HEADERS = frozenset(
    {
        "connection",
        "access-control-allow-origin",
        "content-length",
    }
)

# Outbound failures that get a detail message; everything else is opaque
_REQUEST_ERRORS = (
    httpx.InvalidURL,
    httpx.UnsupportedProtocol,
    httpx.ConnectError,
    httpx.ConnectTimeout,
)


class ProxyStage(str, Enum):
    """Last stage a proxied request completed."""

    RECEIVED = "received"
    METHOD_CHECKED = "method_checked"
    URI_PARSED = "uri_parsed"
    FORWARDED = "forwarded"
    STREAMING = "streaming"


def check_method(request: web.BaseRequest) -> web.BaseRequest:
    """Let GET requests through, reject everything else.

    The proxy route matches every method so that this error, rather than
    aiohttp's generic 405, is what non-GET callers receive.

    Raises:
        MethodNotSupportedError: If the method is not exactly GET.
    """
    if request.method != hdrs.METH_GET:
        raise MethodNotSupportedError()
    return request


def parse_target_url(path: str) -> httpx.URL:
    """
    Extract the target URL from a request path.

    The path minus its leading slash must be an absolute http(s) URL with a
    host. Query string and fragment stay part of the URL.

    Args:
        path: Raw request path, including any query string.

    Returns:
        The parsed target URL.

    Raises:
        UnableToParseUriError: If the path is empty, has no leading slash,
            is not a valid URL, has no host, or uses another scheme.
    """
    if not path or not path.startswith("/"):
        raise UnableToParseUriError()

    remainder = path[1:]

    # Checked on the raw text: httpx would lowercase "HTTP" to "http"
    scheme, sep, _ = remainder.partition(":")
    if not sep or scheme not in ALLOWED_SCHEMES:
        raise UnableToParseUriError()

    try:
        url = httpx.URL(remainder)
    except httpx.InvalidURL as e:
        raise UnableToParseUriError() from e

    if not url.host:
        raise UnableToParseUriError()

    return url


async def forward_request(client: httpx.AsyncClient, url: httpx.URL) -> httpx.Response:
    """
    Send GET to the target and return the response with its body unread.

    The body is left undecoded: compressed content is relayed as-is together
    with its Content-Encoding header.

    Args:
        client: Shared outbound client.
        url: Validated target URL.

    Returns:
        Streaming upstream response. The caller must close it.

    Raises:
        RequestError: On URL construction or connection failures.
        InternalServerError: On any other transport failure.
    """
    try:
        request = client.build_request(hdrs.METH_GET, url)
        return await client.send(request, stream=True)
    except _REQUEST_ERRORS as e:
        raise RequestError(str(e) or type(e).__name__) from e
    except httpx.HTTPError as e:
        logger.warning(
            "Upstream transport failure",
            error_type=type(e).__name__,
            error=str(e),
        )
        raise InternalServerError() from e


def translate_response(upstream: httpx.Response) -> web.StreamResponse:
    """
    Build the outbound response head from the upstream response.

    Copies the status and every header except the blocked ones, then
    sets Access-Control-Allow-Origin to "*". Without Content-Length the
    body goes out chunked.

    Args:
        upstream: Upstream response (body unread).

    Returns:
        Unprepared stream response.
    """
    response = web.StreamResponse(status=upstream.status_code)

    for name, value in upstream.headers.multi_items():
        if name.lower() in BLOCKED_RESPONSE_HEADERS:
            continue
        response.headers.add(name, value)

    response.headers[hdrs.ACCESS_CONTROL_ALLOW_ORIGIN] = "*"
    return response


async def relay_body(
    request: web.BaseRequest,
    response: web.StreamResponse,
    upstream: httpx.Response,
    chunk_size: int | None = None,
) -> int:
    """
    Send the response head, then the upstream body chunk by chunk.

    Args:
        request: Inbound request the response belongs to.
        response: Response built by translate_response.
        upstream: Upstream response whose body is still unread.
        chunk_size: Optional re-chunking size for raw reads.

    Returns:
        Number of body bytes relayed.
    """
    relayed = 0
    await response.prepare(request)

    async for chunk in upstream.aiter_raw(chunk_size):
        await response.write(chunk)
        relayed += len(chunk)

    await response.write_eof()
    return relayed


async def proxy(
    request: web.BaseRequest,
    client: httpx.AsyncClient,
    *,
    chunk_size: int | None = None,
) -> web.StreamResponse:
    """
    Run one inbound request through the whole pipeline.

    Args:
        request: Inbound request.
        client: Shared outbound client.
        chunk_size: Optional re-chunking size for the relayed body.

    Returns:
        Error response, or the streamed upstream response.
    """
    stage = ProxyStage.RECEIVED
    try:
        check_method(request)
        stage = ProxyStage.METHOD_CHECKED

        url = parse_target_url(request.raw_path)
        stage = ProxyStage.URI_PARSED

        upstream = await forward_request(client, url)
        stage = ProxyStage.FORWARDED
    except ProxyError as e:
        logger.info(
            "Proxy request rejected",
            kind=e.kind.value,
            stage=stage.value,
            status=e.status,
            detail=e.detail,
        )
        return create_error_response(e)

    logger.debug(
        "Upstream responded",
        target_host=url.host,
        status=upstream.status_code,
    )

    try:
        response = translate_response(upstream)
        stage = ProxyStage.STREAMING
        relayed = await relay_body(request, response, upstream, chunk_size)
    except ConnectionResetError:
        # Response head may already be out; nothing more can be sent
        logger.info("Client disconnected", stage=stage.value, target_host=url.host)
        return response
    except httpx.HTTPError as e:
        # Re-raised so aiohttp drops the connection without a final chunk
        logger.warning(
            "Upstream stream failed",
            target_host=url.host,
            error_type=type(e).__name__,
            error=str(e),
        )
        raise
    finally:
        await upstream.aclose()

    logger.info(
        "Proxy request completed",
        target_host=url.host,
        status=upstream.status_code,
        bytes=relayed,
    )
    return response
