import logging

from flask import Flask
from config import Config

from models import db
from flask_migrate import Migrate
from security.rate_limit import limiter


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Abuse prevention engine + rate limit headers
    limiter.init_app(app)

    register_cli(app)

    return app

#-------------------------
import json

import click
from models.audit_log import AuditLog
from models.account_lockout import AccountLockout
from security.rate_limit import get_engine, identifier_key
from utils.clock import isoformat_z

def _lockout_key(value: str) -> str:
    return value if value.startswith("identifier:") else identifier_key(value)

def register_cli(app):
    @app.cli.command("sweep")
    def sweep():
        """Delete expired rate limit buckets and lockouts (run from cron)."""
        result = get_engine().sweep()
        click.echo(f"Deleted {result.rate_limits} rate limit records, {result.lockouts} lockouts")

    @app.cli.command("unlock")
    @click.argument("identifier")
    def unlock(identifier):
        """Clear the lockout for an email/username (or a full identifier:<...> key)."""
        key = _lockout_key(identifier)
        if get_engine().lockouts.unlock(key):
            click.echo(f"{key} unlocked")
        else:
            click.echo(f"{key} was not locked")

    @app.cli.command("lockout-status")
    @click.argument("identifier", required=False)
    def lockout_status(identifier):
        """Show one identifier's lockout state, or every stored lockout."""
        engine = get_engine()
        if identifier:
            key = _lockout_key(identifier)
            state = engine.is_locked(key)
            if state.locked:
                click.echo(f"{key} locked until {isoformat_z(state.locked_until)} ({state.reason})")
            else:
                click.echo(f"{key} not locked")
            return

        rows = AccountLockout.query.order_by(AccountLockout.locked_until.desc()).all()
        if not rows:
            click.echo("No lockouts")
        for row in rows:
            click.echo(f"{row.identifier}\t{isoformat_z(row.locked_until)}\t{row.attempts}\t{row.reason or ''}")

    @app.cli.command("audit-log")
    @click.option("--event", default=None, help="Only show this event, e.g. ACCOUNT_LOCKED")
    @click.option("--identifier", default=None)
    @click.option("--limit", default=50, show_default=True, type=int)
    def audit_log(event, identifier, limit):
        """Print recent audit entries as JSON lines."""
        limit = max(1, min(limit, 500))

        q = AuditLog.query
        if event:
            q = q.filter(AuditLog.event == event)
        if identifier:
            q = q.filter(AuditLog.identifier == identifier)

        for r in q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all():
            click.echo(json.dumps({
                "id": r.id,
                "timestamp": isoformat_z(r.timestamp),
                "event": r.event,
                "severity": r.severity,
                "identifier": r.identifier,
                "ip_address": r.ip_address,
                "user_id": r.user_id,
                "success": r.success,
                "details": json.loads(r.details_json) if r.details_json else None,
            }))

#-------------------------




if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
