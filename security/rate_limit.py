from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, request

from security.coordinator import LAYER_IP, LAYER_USER, Verdict
from security.engine import AbuseEngine
from security.policy import GLOBAL_API, ActionPolicy
from utils.audit import log_auth_attempt
from utils.clock import isoformat_z

EXTENSION_KEY = "rate_limiter"

CREDENTIAL_FIELDS = ("emailOrUsername", "email", "username")

BACKOFF_NOTICE = " Due to repeated violations, your cooldown period has been extended."
CAPTCHA_MESSAGE = "Please complete CAPTCHA verification to continue. Too many failed attempts detected."
LOCKED_MESSAGE = "Account temporarily locked due to too many failed attempts"


def ip_key(address: str) -> str:
    return f"ip:{address}"


def identifier_key(credential: str) -> str:
    return f"identifier:{credential.strip().lower()}"


def user_key(user_id) -> str:
    return f"user:{user_id}"


def _client_ip(req) -> str:
    forwarded = req.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return req.headers.get("X-Real-IP") or req.remote_addr or "unknown"


def _credential(req) -> Optional[str]:
    data = req.get_json(silent=True)
    if not isinstance(data, dict):
        data = req.form
    for name in CREDENTIAL_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


def get_user_identifier(req) -> Optional[str]:
    credential = _credential(req)
    return identifier_key(credential) if credential else None


class RateLimiter:
    """
    Flask extension exposing the abuse prevention engine to route handlers.
    """

    def __init__(self, app=None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app, engine: AbuseEngine = None):
        app.extensions[EXTENSION_KEY] = engine or AbuseEngine.from_config(app.config)
        app.after_request(_apply_headers)
        if app.config.get("GLOBAL_RATE_LIMIT_ENABLED"):
            app.before_request(_global_limit)


limiter = RateLimiter()


def get_engine() -> AbuseEngine:
    return current_app.extensions[EXTENSION_KEY]


def check(req, action: str, policy: ActionPolicy = None, track_by_user: bool = False):
    """
    Runs the checks for one request. Returns (verdict, policy) and remembers
    both on `g` so the response carries the rate limit headers.
    """
    engine = get_engine()
    policy = policy or engine.policy(action)
    address = _client_ip(req)

    primary, layer = ip_key(address), LAYER_IP
    user = getattr(g, "user", None)
    if track_by_user and user is not None:
        primary, layer = user_key(user.id), LAYER_USER

    verdict = engine.check(
        primary,
        get_user_identifier(req) if policy.layered else None,
        action,
        policy,
        ip_address=address,
        primary_layer=layer,
    )

    g.rate_limit = verdict
    g.rate_limit_policy = policy
    g.requires_captcha = verdict.requires_captcha
    return verdict, policy


def clear_all(req, action: str = "login") -> int:
    """
    Call after a verified success so earlier mistakes are forgotten.
    """
    return get_engine().clear_all(ip_key(_client_ip(req)), get_user_identifier(req), action)


def report_login(success: bool, user_id=None, error_message: str = None) -> bool:
    return log_auth_attempt(
        get_engine().audit,
        get_user_identifier(request),
        _client_ip(request),
        success,
        user_id=user_id,
        user_agent=request.headers.get("User-Agent"),
        error_message=error_message,
    )


def rate_limit_headers(verdict: Verdict, policy: ActionPolicy) -> dict:
    headers = {
        "X-RateLimit-Limit": str(policy.max_attempts),
        "X-RateLimit-Remaining": str(max(0, verdict.remaining)),
        "X-RateLimit-Reset": isoformat_z(verdict.reset_at),
    }
    if not verdict.allowed:
        headers["Retry-After"] = str(verdict.retry_after(get_engine().clock()))
    return headers


def too_many_requests(verdict: Verdict, policy: ActionPolicy):
    retry_after = verdict.retry_after(get_engine().clock())

    if verdict.locked:
        resp = jsonify(
            error=LOCKED_MESSAGE,
            locked=True,
            lockedUntil=isoformat_z(verdict.locked_until),
            reason=verdict.reason,
            retryAfter=retry_after,
        )
    else:
        message = policy.message
        if verdict.backoff_applied:
            message += BACKOFF_NOTICE
        body = dict(error=message, retryAfter=retry_after, resetAt=isoformat_z(verdict.reset_at))
        if verdict.requires_captcha:
            body["requiresCaptcha"] = True
            body["captchaMessage"] = CAPTCHA_MESSAGE
        resp = jsonify(body)

    resp.status_code = 429
    for name, value in rate_limit_headers(verdict, policy).items():
        resp.headers[name] = value
    return resp


def _apply_headers(resp):
    verdict = g.get("rate_limit")
    policy = g.get("rate_limit_policy")
    if verdict is not None and policy is not None:
        for name, value in rate_limit_headers(verdict, policy).items():
            resp.headers.setdefault(name, value)
    return resp


def _global_limit():
    verdict, policy = check(request, GLOBAL_API)
    if not verdict.allowed:
        return too_many_requests(verdict, policy)
    return None


def limit(action: str, policy: ActionPolicy = None, track_by_user: bool = False):
    """
    Usage: @limit("login")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verdict, used = check(request, action, policy=policy, track_by_user=track_by_user)
            if not verdict.allowed:
                return too_many_requests(verdict, used)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def _is_failure(resp) -> bool:
    if resp.status_code in (401, 403):
        return True
    data = resp.get_json(silent=True) if resp.is_json else None
    return isinstance(data, dict) and bool(data.get("error"))


def track_failures(action: str, track_by_user: bool = False):
    """
    Counts a hit only when the view fails (401/403 or an "error" body) and
    clears the bucket when it succeeds. Never blocks by itself.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            resp = current_app.make_response(fn(*args, **kwargs))
            engine = get_engine()
            user = getattr(g, "user", None)
            if track_by_user and user is not None:
                identifier = user_key(user.id)
            else:
                identifier = ip_key(_client_ip(request))

            if _is_failure(resp):
                engine.tracker.check(identifier, action, engine.policy(action))
            else:
                engine.clear_all(identifier, None, action)
            return resp
        return wrapper
    return decorator
