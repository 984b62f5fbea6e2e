import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from models import db
from models.audit_log import AuditLog
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# Keys that must never reach the audit trail
SECRET_KEYS = {"password", "token", "secret", "oldpassword", "newpassword", "old_password", "new_password"}


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AuditEvent:
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"

    # Password management
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_COMPLETE = "PASSWORD_RESET_COMPLETE"

    # Account verification
    EMAIL_VERIFICATION_SENT = "EMAIL_VERIFICATION_SENT"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"

    # Security events
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


def scrub(details: Optional[dict]) -> Optional[dict]:
    """
    Drops secret-bearing keys (recursively) from structured details.
    """
    if details is None:
        return None
    clean = {}
    for key, value in details.items():
        if str(key).lower() in SECRET_KEYS:
            continue
        if isinstance(value, dict):
            value = scrub(value)
        clean[key] = value
    return clean


@dataclass(frozen=True)
class AuditEntry:
    event: str
    severity: Severity = Severity.MEDIUM
    identifier: Optional[str] = None
    ip_address: Optional[str] = None
    user_id: Optional[int] = None
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    details: Optional[dict] = None
    timestamp: datetime = field(default_factory=utcnow)


class AuditSink:
    """
    Append-only audit trail. Writing is best-effort: emit() never raises,
    whatever write() does.
    """

    def write(self, entry: AuditEntry) -> None:
        raise NotImplementedError

    def emit(self, entry: AuditEntry) -> bool:
        try:
            self.write(entry)
        except Exception:
            logger.exception("Failed to write audit entry %s", entry.event)
            return False
        return True


class DatabaseAuditSink(AuditSink):
    def write(self, entry: AuditEntry) -> None:
        details = scrub(entry.details)
        row = AuditLog(
            event=entry.event,
            severity=Severity(entry.severity).value,
            identifier=entry.identifier,
            ip_address=entry.ip_address,
            user_id=entry.user_id,
            user_agent=entry.user_agent[:255] if entry.user_agent else None,
            success=entry.success,
            error_message=entry.error_message[:255] if entry.error_message else None,
            details_json=json.dumps(details, default=str) if details else None,
            timestamp=entry.timestamp,
        )
        db.session.add(row)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


class LoggingAuditSink(AuditSink):
    """Writes entries to the "audit" logger instead of the database."""

    audit_logger = logging.getLogger("audit")

    def write(self, entry: AuditEntry) -> None:
        self.audit_logger.info(
            "%s severity=%s identifier=%s ip=%s details=%s",
            entry.event,
            Severity(entry.severity).value,
            entry.identifier,
            entry.ip_address,
            json.dumps(scrub(entry.details), default=str),
        )


def log_auth_attempt(sink: AuditSink, identifier: Optional[str], ip_address: Optional[str],
                     success: bool, user_id=None, user_agent=None, error_message=None) -> bool:
    """
    Records a login outcome reported by the caller. Only the identifier is
    kept, never the submitted password.
    """
    return sink.emit(AuditEntry(
        event=AuditEvent.LOGIN_SUCCESS if success else AuditEvent.LOGIN_FAILED,
        severity=Severity.LOW if success else Severity.MEDIUM,
        identifier=identifier,
        ip_address=ip_address,
        user_id=user_id,
        user_agent=user_agent,
        success=success,
        error_message=error_message,
    ))
