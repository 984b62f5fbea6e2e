from datetime import timedelta

from sqlalchemy.exc import OperationalError

from security.janitor import SweepResult


def test_sweep_deletes_expired_rows(engine, clock):
    engine.store.upsert_increment("ip:old", "login", timedelta(minutes=5), clock())
    engine.lockouts.lock("identifier:old@example.com", attempts=10, threshold=10, duration=timedelta(minutes=1))

    clock.advance(minutes=10)
    engine.store.upsert_increment("ip:new", "login", timedelta(minutes=5), clock())
    engine.lockouts.lock("identifier:new@example.com", attempts=10, threshold=10)

    result = engine.sweep()

    assert result == SweepResult(rate_limits=1, lockouts=1)
    assert engine.store.get("ip:old", "login") is None
    assert engine.store.get("ip:new", "login") is not None


def test_sweep_with_nothing_to_delete(engine):
    assert engine.sweep() == SweepResult(0, 0)


def test_rate_limit_cleanup_failure_still_sweeps_lockouts(engine, clock, monkeypatch):
    engine.lockouts.lock("identifier:old@example.com", attempts=10, threshold=10, duration=timedelta(minutes=1))
    clock.advance(minutes=10)

    def broken(now):
        raise OperationalError("DELETE", {}, Exception("read-only"))

    monkeypatch.setattr(engine.store, "delete_expired_before", broken)

    assert engine.sweep() == SweepResult(rate_limits=0, lockouts=1)


def test_lockout_cleanup_failure_keeps_rate_limit_count(engine, clock, monkeypatch):
    engine.store.upsert_increment("ip:old", "login", timedelta(minutes=5), clock())
    clock.advance(minutes=10)

    def broken(now):
        raise OperationalError("DELETE", {}, Exception("read-only"))

    monkeypatch.setattr(engine.lockouts, "delete_expired_before", broken)

    assert engine.sweep() == SweepResult(rate_limits=1, lockouts=0)
    assert engine.store.get("ip:old", "login") is None
