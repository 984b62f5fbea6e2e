import json
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from models import db
from models.account_lockout import AccountLockout
from models.audit_log import AuditLog
from security.lockout import Locked, LockoutMachine, Unlocked, lockout_state
from utils.audit import DatabaseAuditSink

USER = "identifier:alice@example.com"


def _machine(clock):
    return LockoutMachine(DatabaseAuditSink(), duration=timedelta(hours=1), clock=clock)


def test_unknown_identifier_is_unlocked(ctx, clock):
    state = _machine(clock).status(USER)

    assert state == Unlocked()
    assert not state.locked


def test_lock_then_status(ctx, clock):
    machine = _machine(clock)
    locked = machine.lock(USER, attempts=10, threshold=10, ip_address="10.0.0.1")

    assert isinstance(locked, Locked)
    assert locked.locked_until == clock() + timedelta(hours=1)

    state = machine.is_locked(USER)
    assert state.locked
    assert state.attempts == 10
    assert state.reason == "Exceeded 10 failed login attempts"


def test_lock_emits_high_severity_audit_entry(ctx, clock):
    _machine(clock).lock(USER, attempts=10, threshold=10, ip_address="10.0.0.1")

    entry = AuditLog.query.filter_by(event="ACCOUNT_LOCKED").one()
    details = json.loads(entry.details_json)

    assert entry.severity == "HIGH"
    assert entry.identifier == USER
    assert entry.ip_address == "10.0.0.1"
    assert details["attempts"] == 10
    assert "password" not in details


def test_relock_overwrites_single_row(ctx, clock):
    machine = _machine(clock)
    machine.lock(USER, attempts=10, threshold=10)
    clock.advance(minutes=30)
    machine.lock(USER, attempts=12, threshold=10)

    rows = AccountLockout.query.filter_by(identifier=USER).all()
    assert len(rows) == 1
    assert rows[0].attempts == 12
    assert rows[0].locked_until == clock() + timedelta(hours=1)


def test_expired_lockout_is_deleted_on_read(ctx, clock):
    machine = _machine(clock)
    machine.lock(USER, attempts=10, threshold=10)

    clock.advance(hours=1)
    assert not machine.status(USER).locked
    assert AccountLockout.query.filter_by(identifier=USER).first() is None


def test_lockout_state_boundaries(ctx, clock):
    row = AccountLockout(identifier=USER, locked_until=clock() + timedelta(seconds=1), attempts=10)

    assert lockout_state(row, clock()).locked
    assert not lockout_state(row, clock() + timedelta(seconds=1)).locked
    assert lockout_state(None, clock()) == Unlocked()


def test_unlock(ctx, clock):
    machine = _machine(clock)
    machine.lock(USER, attempts=10, threshold=10)

    assert machine.unlock(USER) is True
    assert not machine.status(USER).locked
    assert machine.unlock(USER) is False
    assert AuditLog.query.filter_by(event="ACCOUNT_UNLOCKED").count() == 1


def test_lock_write_failure_returns_none(ctx, clock, monkeypatch):
    machine = _machine(clock)

    def broken(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db.session, "execute", broken)

    assert machine.lock(USER, attempts=10, threshold=10) is None
    monkeypatch.undo()
    assert AuditLog.query.count() == 0


def test_status_read_failure_reports_unlocked_with_error(ctx, clock, monkeypatch):
    machine = _machine(clock)

    class BrokenQuery:
        def filter_by(self, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(AccountLockout, "query", BrokenQuery())

    assert machine.status(USER) == Unlocked(error=True)


def test_delete_expired_before(ctx, clock):
    machine = _machine(clock)
    machine.lock(USER, attempts=10, threshold=10, duration=timedelta(minutes=1))
    machine.lock("identifier:bob@example.com", attempts=10, threshold=10)

    assert machine.delete_expired_before(clock() + timedelta(minutes=2)) == 1
    assert AccountLockout.query.count() == 1


def test_expiry_cleanup_keeps_lock_renewed_after_read(ctx, clock, monkeypatch):
    import security.lockout as lockout_module

    machine = _machine(clock)
    machine.lock(USER, attempts=10, threshold=10)
    clock.advance(hours=2)

    stale_state = lockout_module.lockout_state

    def relocked_after_read(row, now):
        state = stale_state(row, now)
        # another worker locks the identifier again before the cleanup runs
        machine.lock(USER, attempts=20, threshold=10)
        return state

    monkeypatch.setattr(lockout_module, "lockout_state", relocked_after_read)
    assert not machine.status(USER).locked
    monkeypatch.undo()

    row = AccountLockout.query.filter_by(identifier=USER).one()
    assert row.attempts == 20
    assert row.locked_until == clock() + timedelta(hours=1)

    state = machine.status(USER)
    assert state.locked
    assert state.locked_until == clock() + timedelta(hours=1)
