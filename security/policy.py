import logging
from dataclasses import dataclass, replace, fields
from datetime import timedelta
from typing import Optional

from security.backoff import DEFAULT_MULTIPLIER, DEFAULT_MAX_BACKOFF

logger = logging.getLogger(__name__)

LOGIN = "login"
REGISTER = "register"
PASSWORD_RESET = "passwordReset"
EMAIL_VERIFICATION = "emailVerification"
API = "api"
GLOBAL_API = "globalApi"

# Unknown actions fall back to this one instead of going unprotected
DEFAULT_ACTION = API


@dataclass(frozen=True)
class ActionPolicy:
    max_attempts: int
    window: timedelta
    message: str = "Too many requests. Please slow down."
    captcha_threshold: Optional[int] = None
    lockout_threshold: Optional[int] = None
    layered: bool = False
    backoff_multiplier: float = DEFAULT_MULTIPLIER
    max_backoff: timedelta = DEFAULT_MAX_BACKOFF
    lockout_duration: timedelta = timedelta(hours=1)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.window <= timedelta(0):
            raise ValueError("window must be positive")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.max_backoff < timedelta(0):
            raise ValueError("max_backoff must not be negative")
        for name in ("captcha_threshold", "lockout_threshold"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ValueError(f"{name} must be at least 1 when set")


def _ms(value) -> timedelta:
    return timedelta(milliseconds=int(value))


def _coerce_override(name: str, value):
    # Durations may be given as timedelta or as seconds
    if name in ("window", "max_backoff", "lockout_duration") and not isinstance(value, timedelta):
        return timedelta(seconds=float(value))
    return value


def build_policies(config) -> dict:
    """
    Builds the action -> ActionPolicy table from a Flask config mapping.
    RATE_LIMIT_POLICIES may override individual fields per action, e.g.
    {"register": {"max_attempts": 10}}.
    """
    multiplier = float(config.get("RATE_LIMIT_BACKOFF_MULTIPLIER", DEFAULT_MULTIPLIER))
    max_backoff = _ms(config.get("RATE_LIMIT_MAX_BACKOFF_MS", 7200000))
    lockout_duration = _ms(config.get("RATE_LIMIT_LOCKOUT_DURATION_MS", 3600000))

    shared = dict(
        backoff_multiplier=multiplier,
        max_backoff=max_backoff,
        lockout_duration=lockout_duration,
    )

    policies = {
        LOGIN: ActionPolicy(
            max_attempts=int(config.get("RATE_LIMIT_MAX_ATTEMPTS", 5)),
            window=_ms(config.get("RATE_LIMIT_WINDOW_MS", 300000)),
            message="Too many login attempts. Please try again later.",
            captcha_threshold=int(config.get("RATE_LIMIT_CAPTCHA_THRESHOLD", 3)),
            lockout_threshold=int(config.get("RATE_LIMIT_LOCKOUT_THRESHOLD", 10)),
            layered=True,
            **shared,
        ),
        REGISTER: ActionPolicy(
            max_attempts=3,
            window=timedelta(minutes=15),
            message="Too many registration attempts. Please try again later.",
            **shared,
        ),
        PASSWORD_RESET: ActionPolicy(
            max_attempts=3,
            window=timedelta(minutes=15),
            message="Too many password reset requests. Please try again later.",
            **shared,
        ),
        EMAIL_VERIFICATION: ActionPolicy(
            max_attempts=5,
            window=timedelta(minutes=10),
            message="Too many verification attempts. Please try again later.",
            **shared,
        ),
        API: ActionPolicy(
            max_attempts=100,
            window=timedelta(minutes=1),
            message="Too many requests. Please slow down.",
            **shared,
        ),
        GLOBAL_API: ActionPolicy(
            max_attempts=int(config.get("GLOBAL_RATE_LIMIT_MAX", 1000)),
            window=timedelta(minutes=int(config.get("GLOBAL_RATE_LIMIT_WINDOW_MIN", 15))),
            message="Global rate limit exceeded. Please slow down your requests.",
            **shared,
        ),
    }

    known = {f.name for f in fields(ActionPolicy)}
    for action, overrides in (config.get("RATE_LIMIT_POLICIES") or {}).items():
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown policy fields for {action!r}: {sorted(unknown)}")
        values = {k: _coerce_override(k, v) for k, v in overrides.items()}
        base = policies.get(action)
        if base is None:
            # Caller-defined action: start from the generic API policy
            base = policies[DEFAULT_ACTION]
        policies[action] = replace(base, **values)

    return policies


def get_policy(policies: dict, action: str) -> ActionPolicy:
    policy = policies.get(action)
    if policy is None:
        logger.warning("No rate limit policy for action %r, using %r", action, DEFAULT_ACTION)
        return policies[DEFAULT_ACTION]
    return policy
