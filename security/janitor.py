import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.bucket_store import BucketStore
from security.lockout import LockoutMachine
from utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    rate_limits: int = 0
    lockouts: int = 0


class Janitor:
    """
    Deletes expired buckets and lockouts. Meant to run from a scheduler
    (see `flask sweep`), outside the request path.
    """

    def __init__(self, store: BucketStore, lockouts: LockoutMachine, clock=utcnow):
        self.store = store
        self.lockouts = lockouts
        self.clock = clock

    def sweep(self, now: datetime = None) -> SweepResult:
        now = now or self.clock()
        rate_limits = lockouts = 0
        # Each delete commits on its own; a later failure keeps the earlier count
        try:
            rate_limits = self.store.delete_expired_before(now)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Rate limit cleanup failed")

        try:
            lockouts = self.lockouts.delete_expired_before(now)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Lockout cleanup failed")

        logger.info("Cleaned up %d rate limit records, %d lockouts", rate_limits, lockouts)
        return SweepResult(rate_limits=rate_limits, lockouts=lockouts)
