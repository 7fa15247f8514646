"""
Structured logging, timing and the hash-chained audit log.
"""

import io
import json

import pytest

from zkbridge.observability import (
    BridgeLayer,
    ClaimAuditLog,
    configure_logging,
    correlation_id_var,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    timed_operation,
)


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    configure_logging("debug", "json", stream=stream)
    return stream


def _events(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_json_lines_carry_layer_and_context(log_stream):
    token = set_correlation_id("corr-test")
    try:
        get_logger("parser", BridgeLayer.PARSER).info("Parsed", operation="parse", txid="ab" * 32)
    finally:
        correlation_id_var.reset(token)

    (event,) = _events(log_stream)
    assert event["level"] == "info"
    assert event["logger"] == "zkbridge.parser.parser"
    assert event["layer"] == "parser"
    assert event["operation"] == "parse"
    assert event["correlation_id"] == "corr-test"
    assert event["context"] == {"txid": "ab" * 32}


def test_text_format():
    stream = io.StringIO()
    configure_logging("info", "text", stream=stream)
    get_logger("cli", BridgeLayer.CLI).warning("Slow", operation="fetch", attempt=2)
    line = stream.getvalue().strip()
    assert "WARNING" in line
    assert "op=fetch" in line
    assert "attempt=2" in line


def test_level_filtering():
    stream = io.StringIO()
    configure_logging("warning", "json", stream=stream)
    logger = get_logger("x", BridgeLayer.CONFIG)
    logger.info("hidden")
    logger.error("shown", error_code="E1")
    (event,) = _events(stream)
    assert event["message"] == "shown"
    assert event["error_code"] == "E1"


def test_configure_replaces_handler(log_stream):
    second = io.StringIO()
    configure_logging("info", "json", stream=second)
    get_logger("x", BridgeLayer.CONFIG).info("once")
    assert log_stream.getvalue() == ""
    assert len(_events(second)) == 1


def test_timed_operation(log_stream):
    logger = get_logger("witness", BridgeLayer.WITNESS)

    @timed_operation(logger, "build")
    def build(ok):
        if not ok:
            raise ValueError("bad")
        return "done"

    assert build(True) == "done"
    with pytest.raises(ValueError):
        build(False)

    ok, failed = _events(log_stream)
    assert ok["message"] == "Operation build completed"
    assert ok["duration_ms"] >= 0
    assert failed["level"] == "warning"
    assert failed["context"]["error"] == "ValueError"


def test_correlation_id_generated_once():
    token = correlation_id_var.set("")
    try:
        first = get_correlation_id()
        assert first.startswith("corr-")
        assert get_correlation_id() == first
    finally:
        correlation_id_var.reset(token)


class TestAuditLog:

    def test_chain_links(self):
        audit = ClaimAuditLog()
        a = audit.log("owner", "register_locker", "1", "success")
        b = audit.log("claimant", "claim", "2", "success", amount=5)
        assert a.previous_event_digest is None
        assert b.previous_event_digest == a.event_digest
        assert b.sequence == 2
        assert len(audit) == 2
        assert audit.verify_chain() == (True, None)

    def test_tampered_entry_detected(self):
        audit = ClaimAuditLog()
        audit.log("owner", "register_locker", "1", "success")
        audit.log("claimant", "claim", "2", "success", amount=5)
        audit.log("claimant", "claim", "3", "success", amount=6)
        audit._events[1].details["amount"] = 500
        assert audit.verify_chain() == (False, 1)

    def test_reordered_entries_detected(self):
        audit = ClaimAuditLog()
        for i in range(3):
            audit.log("claimant", "claim", str(i), "success")
        audit._events[1], audit._events[2] = audit._events[2], audit._events[1]
        assert audit.verify_chain() == (False, 1)
