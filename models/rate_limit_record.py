from utils.clock import utcnow
from models.db import db

class RateLimitRecord(db.Model):
    __tablename__ = "rate_limit_records"
    __table_args__ = (
        db.UniqueConstraint("identifier", "action", name="uq_rate_limit_records_identifier_action"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Namespaced key: "ip:<addr>", "identifier:<email>" or "user:<id>"
    identifier = db.Column(db.String(320), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)

    attempts = db.Column(db.Integer, default=1, nullable=False)
    reset_at = db.Column(db.DateTime, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
