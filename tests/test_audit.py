import json
import logging

from models.audit_log import AuditLog
from utils.audit import (
    AuditEntry,
    AuditSink,
    DatabaseAuditSink,
    LoggingAuditSink,
    Severity,
    log_auth_attempt,
    scrub,
)


class ExplodingSink(AuditSink):
    def write(self, entry):
        raise RuntimeError("audit database unreachable")


def test_scrub_drops_secrets():
    details = {
        "email": "alice@example.com",
        "password": "hunter2",
        "newPassword": "hunter3",
        "nested": {"token": "abc", "attempts": 3},
    }

    assert scrub(details) == {"email": "alice@example.com", "nested": {"attempts": 3}}
    assert scrub(None) is None


def test_database_sink_persists_scrubbed_entry(ctx):
    sink = DatabaseAuditSink()
    assert sink.emit(AuditEntry(
        event="SUSPICIOUS_ACTIVITY",
        severity=Severity.CRITICAL,
        identifier="identifier:alice@example.com",
        ip_address="10.0.0.1",
        details={"password": "hunter2", "attempts": 4},
    ))

    row = AuditLog.query.one()
    assert row.severity == "CRITICAL"
    assert json.loads(row.details_json) == {"attempts": 4}


def test_write_failure_is_swallowed_and_logged(caplog):
    with caplog.at_level(logging.ERROR, logger="utils.audit"):
        assert ExplodingSink().emit(AuditEntry(event="ACCOUNT_LOCKED")) is False

    assert "ACCOUNT_LOCKED" in caplog.text


def test_logging_sink(caplog):
    with caplog.at_level(logging.INFO, logger="audit"):
        LoggingAuditSink().emit(AuditEntry(event="LOGIN_FAILED", details={"secret": "x", "attempts": 2}))

    assert "LOGIN_FAILED" in caplog.text
    assert "secret" not in caplog.text


def test_log_auth_attempt(ctx):
    sink = DatabaseAuditSink()
    log_auth_attempt(sink, "identifier:alice@example.com", "10.0.0.1", False, error_message="Invalid credentials")
    log_auth_attempt(sink, "identifier:alice@example.com", "10.0.0.1", True, user_id=7)

    failed = AuditLog.query.filter_by(event="LOGIN_FAILED").one()
    ok = AuditLog.query.filter_by(event="LOGIN_SUCCESS").one()

    assert failed.severity == "MEDIUM"
    assert failed.success is False
    assert failed.error_message == "Invalid credentials"
    assert ok.severity == "LOW"
    assert ok.user_id == 7
