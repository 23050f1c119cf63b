"""Sentry SDK integration.

  - ``send_default_pii=False``: no user data is sent.
  - ``before_send`` scrubs any event field whose key names a secret
    (token, secret, password, access key, dsn).
  - No-op when SENTRY_DSN is empty.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS = frozenset({"authtoken", "access_key", "secret", "password", "token", "dsn"})


def _scrub_secrets(event: dict[str, Any], hint: Any) -> dict[str, Any]:
    """before_send hook: redact values for sensitive keys in extra and request data."""
    _scrub_dict(event.get("extra", {}))
    request_data = event.get("request", {}).get("data", {})
    if isinstance(request_data, dict):
        _scrub_dict(request_data)
    return event


def _scrub_dict(d: dict[str, Any]) -> None:
    for key in list(d.keys()):
        if any(sensitive in key.lower() for sensitive in _SENSITIVE_KEYS):
            d[key] = "[REDACTED]"
        elif isinstance(d[key], dict):
            _scrub_dict(d[key])


def init_sentry(dsn: str, environment: str = "development") -> bool:
    """Initialise the Sentry SDK; returns whether it was enabled."""
    if not dsn or not dsn.strip():
        logger.debug("Sentry DSN not configured, skipping initialisation")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
        before_send=_scrub_secrets,
    )
    logger.info("Sentry initialised (environment=%s)", environment)
    return True
