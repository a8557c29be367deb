"""Tests for the structured log formatter."""

import json
import logging

from fee_ledger.core.logging import LedgerJsonFormatter, build_logging_config


def test_json_formatter_carries_ledger_context() -> None:
    formatter = LedgerJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s")
    record = logging.LogRecord("fee_ledger.billing.allocator", logging.INFO, __file__, 1, "Payment allocated", None, None)
    record.ledger_id = "8f2d"
    record.error_code = "BALANCE_EXCEEDED"

    line = json.loads(formatter.format(record))

    assert line["message"] == "Payment allocated"
    assert line["level"] == "INFO"
    assert line["logger"] == "fee_ledger.billing.allocator"
    assert line["ledger_id"] == "8f2d"
    assert line["error_code"] == "BALANCE_EXCEEDED"
    assert "timestamp" in line
    assert "student_ref" not in line


def test_logging_config_selects_formatter() -> None:
    assert build_logging_config("INFO", True)["handlers"]["console"]["formatter"] == "json"
    assert build_logging_config("DEBUG", False)["handlers"]["console"]["formatter"] == "standard"
