from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, delete, update
from sqlalchemy.dialects import postgresql, sqlite

from models import db
from models.rate_limit_record import RateLimitRecord

# Dialects with INSERT ... ON CONFLICT DO UPDATE ... RETURNING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def upsert_insert(table):
    """
    Returns the dialect-specific INSERT construct that supports on_conflict_do_update().
    """
    dialect = db.engine.dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Atomic upsert is not supported on the {dialect!r} dialect")
    return insert(table)


@dataclass(frozen=True)
class Bucket:
    identifier: str
    action: str
    attempts: int
    reset_at: datetime


class BucketStore:
    """
    Shared counters keyed by (identifier, action).

    Every mutation is a single SQL statement, so concurrent requests from any
    number of processes never lose an increment.
    """

    def get(self, identifier: str, action: str) -> Optional[Bucket]:
        row = RateLimitRecord.query.filter_by(identifier=identifier, action=action).first()
        if not row:
            return None
        return Bucket(row.identifier, row.action, row.attempts, row.reset_at)

    def upsert_increment(self, identifier: str, action: str, window: timedelta, now: datetime) -> Bucket:
        """
        Creates the bucket with attempts=1, restarts it when its window has
        expired, or increments it. Returns the post-increment state.
        """
        table = RateLimitRecord.__table__
        fresh_reset_at = now + window

        stmt = upsert_insert(table).values(
            identifier=identifier,
            action=action,
            attempts=1,
            reset_at=fresh_reset_at,
            created_at=now,
            updated_at=now,
        )
        expired = table.c.reset_at < now
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.identifier, table.c.action],
            set_={
                "attempts": case((expired, 1), else_=table.c.attempts + 1),
                "reset_at": case((expired, stmt.excluded.reset_at), else_=table.c.reset_at),
                "updated_at": now,
            },
        ).returning(table.c.attempts, table.c.reset_at)

        row = db.session.execute(stmt).one()
        db.session.commit()
        return Bucket(identifier, action, row.attempts, row.reset_at)

    def set_reset_at(self, identifier: str, action: str, new_reset_at: datetime,
                     attempts: Optional[int] = None) -> bool:
        """
        Moves reset_at forward, never back. A slower request computing a
        shorter backoff cannot undo a longer one already stored.
        Returns False when the stored reset_at was already at or past the new one.
        """
        # attempts is only written when given, so a concurrent increment is not overwritten
        values = {"reset_at": new_reset_at}
        if attempts is not None:
            values["attempts"] = attempts

        result = db.session.execute(
            update(RateLimitRecord)
            .where(
                RateLimitRecord.identifier == identifier,
                RateLimitRecord.action == action,
                RateLimitRecord.reset_at < new_reset_at,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount > 0

    def delete(self, identifier: str, action: str) -> int:
        result = db.session.execute(
            delete(RateLimitRecord)
            .where(RateLimitRecord.identifier == identifier, RateLimitRecord.action == action)
        )
        db.session.commit()
        return result.rowcount

    def delete_expired_before(self, now: datetime) -> int:
        result = db.session.execute(
            delete(RateLimitRecord).where(RateLimitRecord.reset_at < now)
        )
        db.session.commit()
        return result.rowcount
