"""
Main entry point for cors-relay.
"""

import asyncio

from corsrelay.proxy.server import serve
from corsrelay.utils.config import get_settings
from corsrelay.utils.logging import configure_logging, get_logger


def run() -> None:
    """Load settings, configure logging and serve until interrupted."""
    settings = get_settings()
    configure_logging(
        log_level=settings.general.log_level,
        json_format=settings.general.json_logs,
    )

    logger = get_logger(__name__)
    logger.info(
        "cors-relay initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
