"""Unit tests for request-scoped logging helpers."""

import logging

from audit_queue.logging_utils import RequestLoggerAdapter, bind_request_id, get_request_id


def test_request_id_from_headers():
    assert get_request_id({"X-Request-ID": "abc123"}) == "abc123"
    assert get_request_id({"x-correlation-id": "corr"}) == "corr"
    assert get_request_id({"X-Trace-Id": "trace"}) == "trace"


def test_request_id_header_precedence():
    headers = {"x-trace-id": "trace", "x-request-id": "req"}
    assert get_request_id(headers) == "req"


def test_request_id_generated_when_missing():
    first = get_request_id({})
    second = get_request_id(None)

    assert len(first) == 12
    assert first != second


def test_adapter_prefixes_messages(caplog):
    logger = logging.getLogger("tests.logging")
    adapter = bind_request_id(logger, "req-42")

    with caplog.at_level(logging.INFO, logger="tests.logging"):
        adapter.info("Tick started")

    assert caplog.records[-1].getMessage() == "[req-42] Tick started"


def test_bind_request_id_replaces_existing_binding():
    logger = logging.getLogger("tests.logging")
    first = bind_request_id(logger, "one")
    second = bind_request_id(first, "two")

    assert isinstance(second, RequestLoggerAdapter)
    assert second.logger is logger
    assert second.extra == {"request_id": "two"}
