"""
cors-relay proxy.

Forwards GET /<absolute URL> to that URL and streams the response back
with Access-Control-Allow-Origin: * so browser code can read it.
"""

from corsrelay.proxy.errors import (
    USAGE,
    InternalServerError,
    MethodNotSupportedError,
    ProxyError,
    ProxyErrorKind,
    RequestError,
    UnableToParseUriError,
)
from corsrelay.proxy.pipeline import (
    ProxyStage,
    check_method,
    forward_request,
    parse_target_url,
    proxy,
    relay_body,
    translate_response,
)
from corsrelay.proxy.server import create_app, serve

__all__ = [
    "USAGE",
    "ProxyError",
    "ProxyErrorKind",
    "MethodNotSupportedError",
    "UnableToParseUriError",
    "RequestError",
    "InternalServerError",
    "ProxyStage",
    "check_method",
    "parse_target_url",
    "forward_request",
    "translate_response",
    "relay_body",
    "proxy",
    "create_app",
    "serve",
]
