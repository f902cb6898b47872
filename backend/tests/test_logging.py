import json
import logging
import os
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from affiliate_engine.core.errors import InsufficientBalance, StoreError
from affiliate_engine.core.logging import JsonLogFormatter, get_structured_logger


def _record(msg, **extra):
    record = logging.LogRecord("affiliate_engine.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_event_and_context():
    line = JsonLogFormatter().format(
        _record("payout.rejected", affiliate_id=7, available_balance=Decimal("12.50"), note=None)
    )
    payload = json.loads(line)
    assert payload["message"] == "payout.rejected"
    assert payload["level"] == "INFO"
    assert payload["affiliate_id"] == 7
    assert payload["available_balance"] == "12.50"
    assert "note" not in payload


def test_formatter_keeps_always_fields_when_empty():
    payload = json.loads(JsonLogFormatter().format(_record("commission.created", order_id=None)))
    assert "order_id" in payload
    assert payload["order_id"] is None


def test_structured_logger_is_configured_once():
    logger = get_structured_logger("affiliate_engine.test_once")
    again = get_structured_logger("affiliate_engine.test_once")
    assert logger is again
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JsonLogFormatter)
    assert logger.propagate is False


def test_error_payloads():
    err = InsufficientBalance("too much", available_balance=Decimal("1.00"))
    assert err.to_dict() == {"code": "insufficient_balance", "message": "too much", "available_balance": "1.00"}
    cause = RuntimeError("timeout")
    store = StoreError("failed", cause=cause)
    assert store.code == "store_error"
    assert store.cause is cause
