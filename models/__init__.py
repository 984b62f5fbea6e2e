from .db import db
from .rate_limit_record import RateLimitRecord
from .account_lockout import AccountLockout
from .audit_log import AuditLog
