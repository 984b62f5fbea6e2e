import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def engine_options(database_uri: str, timeout_seconds: int) -> dict:
    """
    Bounds every store call so a stuck database makes the limiter fail open
    instead of hanging the request.
    """
    if database_uri.startswith("sqlite"):
        # SQLite has no connection pool to wait on, only the busy timeout
        return {"connect_args": {"timeout": timeout_seconds}}

    options = {"pool_timeout": timeout_seconds, "pool_pre_ping": True}
    if database_uri.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    return options


class Config:
    # SQLite database file stored next to the app as authguard.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "authguard.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for a single rate limit store call
    RATE_LIMIT_STORE_TIMEOUT_SECONDS = int(os.getenv("RATE_LIMIT_STORE_TIMEOUT_SECONDS", "5"))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, RATE_LIMIT_STORE_TIMEOUT_SECONDS)

    # Login protection (layered IP + identifier buckets)
    RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW_MS", "300000"))  # 5 minutes
    RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("RATE_LIMIT_MAX_ATTEMPTS", "5"))
    RATE_LIMIT_CAPTCHA_THRESHOLD = int(os.getenv("RATE_LIMIT_CAPTCHA_THRESHOLD", "3"))
    RATE_LIMIT_LOCKOUT_THRESHOLD = int(os.getenv("RATE_LIMIT_LOCKOUT_THRESHOLD", "10"))
    RATE_LIMIT_LOCKOUT_DURATION_MS = int(os.getenv("RATE_LIMIT_LOCKOUT_DURATION_MS", "3600000"))  # 1 hour

    # Exponential backoff for repeat offenders
    RATE_LIMIT_BACKOFF_MULTIPLIER = float(os.getenv("RATE_LIMIT_BACKOFF_MULTIPLIER", "2"))
    RATE_LIMIT_MAX_BACKOFF_MS = int(os.getenv("RATE_LIMIT_MAX_BACKOFF_MS", "7200000"))  # 2 hours

    # Per-action overrides, e.g. {"register": {"max_attempts": 10}}
    RATE_LIMIT_POLICIES = {}

    # Global limiter applied to every request
    GLOBAL_RATE_LIMIT_ENABLED = _env_bool("GLOBAL_RATE_LIMIT_ENABLED")
    GLOBAL_RATE_LIMIT_MAX = int(os.getenv("GLOBAL_RATE_LIMIT_MAX", "1000"))
    GLOBAL_RATE_LIMIT_WINDOW_MIN = int(os.getenv("GLOBAL_RATE_LIMIT_WINDOW_MIN", "15"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    GLOBAL_RATE_LIMIT_ENABLED = False
    RATE_LIMIT_WINDOW_MS = 300000
    RATE_LIMIT_MAX_ATTEMPTS = 5
    RATE_LIMIT_CAPTCHA_THRESHOLD = 3
    RATE_LIMIT_LOCKOUT_THRESHOLD = 10
    RATE_LIMIT_LOCKOUT_DURATION_MS = 3600000
    RATE_LIMIT_BACKOFF_MULTIPLIER = 2.0
    RATE_LIMIT_MAX_BACKOFF_MS = 7200000
