"""Tests for the structured logging system (dossier_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from dossier_kernel.domain.workflow import StepStatus
from dossier_kernel.exceptions import OrderNotFoundError
from dossier_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "dossier_kernel.test"
        assert "ts" in record

    def test_extra_values_are_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "step_submitted",
            extra={"step_instance_ref": uid, "amount": Decimal("499.00"), "status": StepStatus.SUBMITTED},
        )

        record = _parse_log(stream)
        assert record["step_instance_ref"] == str(uid)
        assert record["amount"] == "499.00"
        assert record["status"] == "SUBMITTED"

    def test_kernel_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise OrderNotFoundError("cs_missing")
        except OrderNotFoundError:
            get_logger("test").error("provisioning_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "OrderNotFoundError"
        assert record["exc_code"] == "NOT_FOUND"
        assert record["exc_checkout_session_id"] == "cs_missing"
        assert record["exc_entity_type"] == "Order"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.debug("hidden")
        logger.warning("shown")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""


class TestLogContext:
    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="cs_123", dossier_id="d-1")
        get_logger("test").info("with_context")

        record = _parse_log(stream)
        assert record["correlation_id"] == "cs_123"
        assert record["dossier_id"] == "d-1"

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", order_id=uuid4()):
            assert LogContext.get_all()["actor_id"] == "inner"
            assert "order_id" in LogContext.get_all()
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_ignores_none_and_unknown_fields(self):
        with LogContext.bind(dossier_id=None, unknown_field="x"):
            assert LogContext.get_all() == {}

    def test_clear(self):
        LogContext.set(correlation_id="abc", step_instance_id="si-1")
        LogContext.clear()
        assert LogContext.get_all() == {}
