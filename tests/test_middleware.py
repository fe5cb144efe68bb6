"""Tests for request logging helpers."""

import pytest
from starlette.requests import Request

from mailrules.middleware.logging import _request_id, redact_pii


def _request(headers: dict) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


class TestRedactPii:
    def test_redacts_addresses(self):
        assert redact_pii("add bob@example.com to list") == "add [REDACTED_EMAIL] to list"

    def test_leaves_other_text(self):
        assert redact_pii("/api/v1/rules/42/apply") == "/api/v1/rules/42/apply"


class TestRequestId:
    def test_generated_when_absent(self):
        assert len(_request_id(_request({}))) == 8

    def test_caller_id_kept(self):
        assert _request_id(_request({"X-Request-ID": "trace-1234"})) == "trace-1234"

    @pytest.mark.parametrize("value", ["x" * 65, "bad id", "<script>"])
    def test_suspicious_ids_replaced(self, value):
        assert _request_id(_request({"X-Request-ID": value})) != value
