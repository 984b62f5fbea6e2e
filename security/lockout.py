import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.account_lockout import AccountLockout
from security.bucket_store import upsert_insert
from utils.audit import AuditEntry, AuditEvent, AuditSink, Severity
from utils.clock import isoformat_z, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unlocked:
    locked = False
    # True when the lockout table could not be read
    error: bool = False


@dataclass(frozen=True)
class Locked:
    identifier: str
    locked_until: datetime
    attempts: int
    reason: Optional[str] = None
    locked = True


LockoutState = Union[Locked, Unlocked]


def lockout_state(row: Optional[AccountLockout], now: datetime) -> LockoutState:
    """
    The only place a stored lockout row is turned into a state.
    """
    if row is None or row.locked_until <= now:
        return Unlocked()
    return Locked(
        identifier=row.identifier,
        locked_until=row.locked_until,
        attempts=row.attempts,
        reason=row.reason,
    )


def lockout_reason(threshold: int) -> str:
    return f"Exceeded {threshold} failed login attempts"


class LockoutMachine:
    """
    Identifier-level lockout: UNLOCKED -> LOCKED on lock(), back to UNLOCKED
    when locked_until passes (cleared lazily on the next read) or on unlock().
    """

    def __init__(self, audit: AuditSink, duration: timedelta = timedelta(hours=1), clock=utcnow):
        self.audit = audit
        self.duration = duration
        self.clock = clock

    def status(self, identifier: str, now: datetime = None) -> LockoutState:
        now = now or self.clock()
        try:
            row = AccountLockout.query.filter_by(identifier=identifier).first()
            state = lockout_state(row, now)
            if row is not None and not state.locked:
                # Conditional so a lock() renewed since the read survives
                db.session.execute(
                    delete(AccountLockout).where(
                        AccountLockout.identifier == identifier,
                        AccountLockout.locked_until <= now,
                    ).execution_options(synchronize_session=False)
                )
                db.session.commit()
            return state
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Lockout check failed for %s", identifier)
            return Unlocked(error=True)

    is_locked = status

    def lock(self, identifier: str, attempts: int, threshold: int, now: datetime = None,
             ip_address: str = None, user_id=None, duration: timedelta = None) -> Optional[Locked]:
        """
        Writes (or overwrites) the lockout row and emits ACCOUNT_LOCKED.
        Returns None if the row could not be written.
        """
        now = now or self.clock()
        locked_until = now + (duration or self.duration)
        reason = lockout_reason(threshold)

        table = AccountLockout.__table__
        stmt = upsert_insert(table).values(
            identifier=identifier,
            locked_until=locked_until,
            attempts=attempts,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.identifier],
            set_={
                "locked_until": stmt.excluded.locked_until,
                "attempts": stmt.excluded.attempts,
                "reason": stmt.excluded.reason,
                "updated_at": now,
            },
        )

        try:
            db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Could not persist lockout for %s", identifier)
            return None

        logger.warning("Account locked: %s until %s (%d attempts)", identifier, isoformat_z(locked_until), attempts)

        self.audit.emit(AuditEntry(
            event=AuditEvent.ACCOUNT_LOCKED,
            severity=Severity.HIGH,
            identifier=identifier,
            ip_address=ip_address,
            user_id=user_id,
            success=False,
            details={
                "attempts": attempts,
                "lockedUntil": isoformat_z(locked_until),
                "message": f"Account locked due to {attempts} failed login attempts",
            },
            timestamp=now,
        ))

        return Locked(identifier=identifier, locked_until=locked_until, attempts=attempts, reason=reason)

    def unlock(self, identifier: str) -> bool:
        result = db.session.execute(
            delete(AccountLockout).where(AccountLockout.identifier == identifier)
        )
        db.session.commit()
        removed = result.rowcount > 0
        if removed:
            logger.info("Lockout cleared for %s", identifier)
            self.audit.emit(AuditEntry(
                event=AuditEvent.ACCOUNT_UNLOCKED,
                severity=Severity.MEDIUM,
                identifier=identifier,
            ))
        return removed

    def delete_expired_before(self, now: datetime) -> int:
        result = db.session.execute(
            delete(AccountLockout).where(AccountLockout.locked_until < now)
        )
        db.session.commit()
        return result.rowcount
