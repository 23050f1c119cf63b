"""Tests for the structlog configuration wrapper."""

import logging

import structlog

from zenith.core.logging import _inject_request_id, configure_structlog
from zenith.core.middleware import _request_id_var


class TestConfigureStructlog:
    def test_configure_in_debug_and_prod_modes(self) -> None:
        configure_structlog(debug=True)
        configure_structlog(debug=False)

    def test_logger_usable_after_configure(self) -> None:
        configure_structlog(debug=False)
        structlog.get_logger("test").info("deploy.start", repo="widget")

    def test_stdlib_logger_usable_after_configure(self) -> None:
        configure_structlog(debug=False)
        logging.getLogger("zenith.test").info("stdlib message")

    def test_botocore_is_quietened(self) -> None:
        configure_structlog(debug=True)
        assert logging.getLogger("botocore").level == logging.WARNING


class TestRequestIdInjection:
    def test_request_id_added_inside_request(self) -> None:
        token = _request_id_var.set("req-123")
        try:
            event = _inject_request_id(None, "info", {"event": "x"})
        finally:
            _request_id_var.reset(token)
        assert event["request_id"] == "req-123"

    def test_nothing_added_outside_request(self) -> None:
        event = _inject_request_id(None, "info", {"event": "x"})
        assert "request_id" not in event
