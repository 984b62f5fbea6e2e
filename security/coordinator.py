import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.lockout import Locked, LockoutMachine
from security.policy import ActionPolicy
from security.tracker import BucketResult, RateTracker

logger = logging.getLogger(__name__)

LAYER_IP = "ip"
LAYER_USER = "user"
LAYER_IDENTIFIER = "identifier"
LAYER_BOTH = "both"
LAYER_LOCKOUT = "lockout"


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    remaining: int
    reset_at: datetime
    layer: str
    attempts: int = 0
    requires_captcha: bool = False
    backoff_applied: bool = False
    locked: bool = False
    locked_until: Optional[datetime] = None
    reason: Optional[str] = None
    # A bucket failed open
    error: bool = False
    # The lockout threshold was hit but the lockout row could not be written
    lockout_error: bool = False
    ip_remaining: Optional[int] = None
    identifier_remaining: Optional[int] = None

    @classmethod
    def from_bucket(cls, result: BucketResult, layer: str, **extra) -> "Verdict":
        values = dict(
            allowed=result.allowed,
            remaining=result.remaining,
            reset_at=result.reset_at,
            layer=layer,
            attempts=result.attempts,
            requires_captcha=result.requires_captcha,
            backoff_applied=result.backoff_applied,
            error=result.error,
        )
        values.update(extra)
        return cls(**values)

    @classmethod
    def from_lockout(cls, state: Locked, error: bool = False) -> "Verdict":
        return cls(
            allowed=False,
            remaining=0,
            reset_at=state.locked_until,
            layer=LAYER_LOCKOUT,
            attempts=state.attempts,
            locked=True,
            locked_until=state.locked_until,
            reason=state.reason,
            error=error,
        )

    def retry_after(self, now: datetime) -> int:
        """Seconds until the client may retry, at least 1."""
        until = self.locked_until if self.locked else self.reset_at
        return max(1, math.ceil((until - now).total_seconds()))


class LayeredCoordinator:
    """
    Combines the IP bucket and, when credentials are present, the identifier
    bucket, and drives the lockout machine for actions that have a threshold.
    """

    def __init__(self, tracker: RateTracker, lockouts: LockoutMachine):
        self.tracker = tracker
        self.lockouts = lockouts

    def check(self, ip_identifier: str, user_identifier: Optional[str], action: str,
              policy: ActionPolicy, ip_address: str = None, primary_layer: str = LAYER_IP) -> Verdict:
        if not policy.layered:
            result = self.tracker.check(ip_identifier, action, policy)
            return Verdict.from_bucket(result, primary_layer)

        ip_result = self.tracker.check(ip_identifier, action, policy)
        if not user_identifier:
            return Verdict.from_bucket(ip_result, LAYER_IP)

        user_result = self.tracker.check(user_identifier, action, policy)
        error = ip_result.error or user_result.error

        if policy.lockout_threshold:
            state = self.lockouts.status(user_identifier)
            if state.locked:
                return Verdict.from_lockout(state, error=error)
            # An unreadable lockout table still reaches the caller
            error = error or state.error

            if not user_result.error and user_result.attempts >= policy.lockout_threshold:
                locked = self.lockouts.lock(
                    user_identifier,
                    user_result.attempts,
                    policy.lockout_threshold,
                    ip_address=ip_address,
                    duration=policy.lockout_duration,
                )
                if locked:
                    return Verdict.from_lockout(locked, error=error)
                # Losing the lockout must not also defeat the rate limit
                return Verdict.from_bucket(
                    user_result, LAYER_IDENTIFIER,
                    allowed=False, remaining=0, error=error, lockout_error=True,
                )

        if not ip_result.allowed:
            return Verdict.from_bucket(ip_result, LAYER_IP, error=error)

        if not user_result.allowed:
            return Verdict.from_bucket(user_result, LAYER_IDENTIFIER, error=error)

        return Verdict(
            allowed=True,
            remaining=min(ip_result.remaining, user_result.remaining),
            reset_at=max(ip_result.reset_at, user_result.reset_at),
            layer=LAYER_BOTH,
            attempts=max(ip_result.attempts, user_result.attempts),
            requires_captcha=ip_result.requires_captcha or user_result.requires_captcha,
            error=error,
            ip_remaining=ip_result.remaining,
            identifier_remaining=user_result.remaining,
        )

    def clear_all(self, ip_identifier: str, user_identifier: Optional[str], action: str) -> int:
        """
        Drops both buckets after a verified success. Missing buckets are fine.
        """
        store = self.tracker.store
        removed = 0
        for identifier in (ip_identifier, user_identifier):
            if not identifier:
                continue
            try:
                removed += store.delete(identifier, action)
            except SQLAlchemyError:
                db.session.rollback()
                logger.exception("Could not clear rate limit for %s/%s", identifier, action)
        return removed
