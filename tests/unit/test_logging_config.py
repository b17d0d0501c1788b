"""Unit tests for logging configuration."""

import json
import logging

from pgtables.logging_config import (
    REDACTED,
    CorrelationIdFilter,
    JsonFormatter,
    correlation_id_var,
    is_sensitive_field,
)


def make_record(**extra):
    record = logging.LogRecord("pgtables.test", logging.INFO, __file__, 1, "Row inserted", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    def test_structured_fields(self):
        payload = json.loads(JsonFormatter().format(make_record(table="users", row_id=3)))

        assert payload["message"] == "Row inserted"
        assert payload["table"] == "users"
        assert payload["row_id"] == 3

    def test_sensitive_fields_redacted(self):
        record = make_record(password="hunter22", password_hash="$2b$12$xyz", client_secret="s")

        output = JsonFormatter().format(record)

        assert "hunter22" not in output
        assert "$2b$12$xyz" not in output
        assert json.loads(output)["password_hash"] == REDACTED

    def test_correlation_id(self):
        token = correlation_id_var.set("req-42")
        try:
            record = make_record()
            CorrelationIdFilter().filter(record)
            payload = json.loads(JsonFormatter().format(record))
        finally:
            correlation_id_var.reset(token)

        assert payload["correlation_id"] == "req-42"


def test_is_sensitive_field():
    assert is_sensitive_field("Password_Hash")
    assert not is_sensitive_field("table")
