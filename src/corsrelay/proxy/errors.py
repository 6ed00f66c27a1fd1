"""
Proxy error definitions for cors-relay.

Every failure in the proxy pipeline is one of four kinds. None of them is
retried: each is either a malformed client request or an upstream transport
failure, and re-running the same request would not change the outcome.

| Kind                  | Status | Body                        |
|-----------------------|--------|-----------------------------|
| METHOD_NOT_SUPPORTED  | 405    | usage                       |
| UNABLE_TO_PARSE_URI   | 400    | "Unable to parse URL" usage |
| REQUEST_ERROR         | 400    | detail + usage              |
| INTERNAL_SERVER_ERROR | 500    | usage                       |
"""

from enum import Enum

from aiohttp import web

USAGE = "Usage: GET /URL\n"


class ProxyErrorKind(str, Enum):
    """Closed set of proxy error kinds."""

    METHOD_NOT_SUPPORTED = "METHOD_NOT_SUPPORTED"
    """Inbound method was not GET."""

    UNABLE_TO_PARSE_URI = "UNABLE_TO_PARSE_URI"
    """Path empty, unparseable, missing host, or scheme other than http/https."""

    REQUEST_ERROR = "REQUEST_ERROR"
    """Outbound URL construction or connection failure."""

    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    """Any other outbound transport failure. Deliberately opaque."""


class ProxyError(Exception):
    """
    Base exception for proxy pipeline errors.

    Carries at most one string detail. Subclasses fix the kind and the
    HTTP status.
    """

    kind: ProxyErrorKind = ProxyErrorKind.INTERNAL_SERVER_ERROR
    status: int = 500

    def __init__(self, detail: str | None = None):
        """
        Initialize proxy error.

        Args:
            detail: Optional human-readable message shown before the usage line.
        """
        super().__init__(detail or self.kind.value)
        self._detail = detail

    @property
    def detail(self) -> str | None:
        """The message shown to the caller, if any."""
        return self._detail

    def render(self) -> str:
        """
        Render the plain-text response body.

        Returns:
            Detail line followed by the usage line, or the usage line alone.
        """
        if self._detail is None:
            return USAGE
        return f"{self._detail}\n{USAGE}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._detail!r})"


class MethodNotSupportedError(ProxyError):
    """Raised when the inbound method is not GET."""

    kind = ProxyErrorKind.METHOD_NOT_SUPPORTED
    status = 405

    def __init__(self) -> None:
        super().__init__()


class UnableToParseUriError(ProxyError):
    """Raised when the request path does not hold a usable absolute URL."""

    kind = ProxyErrorKind.UNABLE_TO_PARSE_URI
    status = 400

    def __init__(self) -> None:
        super().__init__("Unable to parse URL")


class RequestError(ProxyError):
    """Raised when the outbound request cannot be built or connected."""

    kind = ProxyErrorKind.REQUEST_ERROR
    status = 400

    def __init__(self, reason: str):
        super().__init__(reason)


class InternalServerError(ProxyError):
    """Raised for any other outbound transport failure."""

    kind = ProxyErrorKind.INTERNAL_SERVER_ERROR
    status = 500

    def __init__(self) -> None:
        super().__init__()


def create_error_response(error: ProxyError) -> web.Response:
    """
    Build the plain-text HTTP response for a proxy error.

    Args:
        error: The error raised by a pipeline stage.

    Returns:
        aiohttp response with the error's status and rendered body.
    """
    return web.Response(status=error.status, text=error.render(), content_type="text/plain")
