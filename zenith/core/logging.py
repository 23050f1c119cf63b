"""Structured logging via structlog.

Configured once from ``create_app()``. Modules log either through
``structlog.get_logger()`` (event-style, key/value fields) or plain
``logging.getLogger()``; both end up on stdout.

Renderer selection:
  debug=True   ConsoleRenderer with colours for local development.
  debug=False  JSONRenderer for machine-parseable logs.

The current request ID is injected into every structlog event, so work
done inside a request handler (clone, build, tunnel polling) can be
correlated without passing the ID around.
"""

from __future__ import annotations

import logging
import sys

import structlog

from zenith.core.middleware import get_request_id


def _inject_request_id(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: add request_id from the ContextVar when set."""
    request_id = get_request_id()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog for the process lifetime.

    Safe to call more than once; the last call wins.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_request_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )
    # botocore logs every request at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
