from datetime import timedelta
from typing import Optional

from security.bucket_store import BucketStore
from security.coordinator import LayeredCoordinator, Verdict, LAYER_IP
from security.janitor import Janitor, SweepResult
from security.lockout import LockoutMachine
from security.policy import ActionPolicy, build_policies, get_policy
from security.tracker import RateTracker
from utils.audit import AuditSink, DatabaseAuditSink
from utils.clock import utcnow


class AbuseEngine:
    """
    Wires the bucket store, tracker, lockout machine, coordinator and janitor
    together from one config mapping.
    """

    def __init__(self, policies: dict, audit: AuditSink = None, clock=utcnow):
        self.policies = policies
        self.clock = clock
        self.audit = audit or DatabaseAuditSink()
        self.store = BucketStore()
        self.tracker = RateTracker(self.store, clock=clock)
        login = policies.get("login")
        self.lockouts = LockoutMachine(
            self.audit,
            duration=login.lockout_duration if login else timedelta(hours=1),
            clock=clock,
        )
        self.coordinator = LayeredCoordinator(self.tracker, self.lockouts)
        self.janitor = Janitor(self.store, self.lockouts, clock=clock)

    @classmethod
    def from_config(cls, config, audit: AuditSink = None, clock=utcnow) -> "AbuseEngine":
        return cls(build_policies(config), audit=audit, clock=clock)

    def policy(self, action: str) -> ActionPolicy:
        return get_policy(self.policies, action)

    def check(self, ip_identifier: str, user_identifier: Optional[str], action: str,
              policy: ActionPolicy = None, ip_address: str = None, primary_layer: str = LAYER_IP) -> Verdict:
        policy = policy or self.policy(action)
        return self.coordinator.check(
            ip_identifier, user_identifier, action, policy,
            ip_address=ip_address, primary_layer=primary_layer,
        )

    def clear_all(self, ip_identifier: str, user_identifier: Optional[str], action: str) -> int:
        return self.coordinator.clear_all(ip_identifier, user_identifier, action)

    def is_locked(self, identifier: str):
        return self.lockouts.status(identifier)

    def sweep(self, now=None) -> SweepResult:
        return self.janitor.sweep(now)
