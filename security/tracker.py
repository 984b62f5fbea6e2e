import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.backoff import backoff_duration, violation_count
from security.bucket_store import BucketStore
from security.policy import ActionPolicy
from utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    attempts: int
    requires_captcha: bool = False
    backoff_applied: bool = False
    # Set when the store failed and the request was let through
    error: bool = False

    @classmethod
    def fail_open(cls, policy: ActionPolicy, now: datetime) -> "BucketResult":
        return cls(
            allowed=True,
            remaining=policy.max_attempts,
            reset_at=now + policy.window,
            attempts=0,
            error=True,
        )


def _requires_captcha(attempts: int, policy: ActionPolicy) -> bool:
    return policy.captcha_threshold is not None and attempts >= policy.captcha_threshold


class RateTracker:
    """
    Check-and-increment protocol against a single bucket.
    """

    def __init__(self, store: BucketStore = None, clock=utcnow):
        self.store = store or BucketStore()
        self.clock = clock

    def check(self, identifier: str, action: str, policy: ActionPolicy) -> BucketResult:
        now = self.clock()

        try:
            bucket = self.store.upsert_increment(identifier, action, policy.window, now)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Rate limit store failed for %s/%s, failing open", identifier, action)
            return BucketResult.fail_open(policy, now)

        attempts = bucket.attempts
        requires_captcha = _requires_captcha(attempts, policy)

        if attempts <= policy.max_attempts:
            return BucketResult(
                allowed=True,
                remaining=policy.max_attempts - attempts,
                reset_at=bucket.reset_at,
                attempts=attempts,
                requires_captcha=requires_captcha,
            )

        reset_at = bucket.reset_at
        backoff_applied = False
        violations = violation_count(attempts, policy.max_attempts)
        if violations > 1:
            reset_at = now + backoff_duration(
                violations, policy.window, policy.backoff_multiplier, policy.max_backoff
            )
            backoff_applied = True
            try:
                self.store.set_reset_at(identifier, action, reset_at)
            except SQLAlchemyError:
                # The increment is already stored; the denial stands
                db.session.rollback()
                logger.exception("Could not extend backoff for %s/%s", identifier, action)

        return BucketResult(
            allowed=False,
            remaining=0,
            reset_at=reset_at,
            attempts=attempts,
            requires_captcha=requires_captcha,
            backoff_applied=backoff_applied,
        )
