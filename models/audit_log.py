from utils.clock import utcnow
from models.db import db

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    event = db.Column(db.String(80), nullable=False, index=True)  # e.g. ACCOUNT_LOCKED, LOGIN_FAILED
    severity = db.Column(db.String(16), default="MEDIUM", nullable=False, index=True)

    identifier = db.Column(db.String(320), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)  # nullable for unauth events
    user_agent = db.Column(db.String(255), nullable=True)

    success = db.Column(db.Boolean, default=True, nullable=False)
    error_message = db.Column(db.String(255), nullable=True)
    details_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
