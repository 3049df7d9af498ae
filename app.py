import logging

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from routes import password_bp
from security.errors import DependencyError
from security.services import current_security, init_security
from utils.audit import log_event
from utils.request_context import normalize_email
from utils.timeutil import utcnow


def create_app(config_object=None, reauthenticate=None, clock=utcnow):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(level=logging.DEBUG if app.config.get("DEBUG") else logging.INFO)

    # Register routes
    app.register_blueprint(password_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Guard, MFA and password checks bound to this app
    init_security(app, reauthenticate=reauthenticate, clock=clock)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("clear-lockout")
    @click.argument("email")
    @click.argument("ip")
    def clear_lockout(email, ip):
        """Clear failed login attempts for EMAIL from IP (admin unlock)."""
        services = current_security()
        outcome = services.guard.clear_failed_attempts(email, ip)
        if not outcome.ok:
            raise click.ClickException(f"Could not clear lockout: {outcome.error.message}")
        try:
            log_event("login_lockout_cleared", metadata={"email": normalize_email(email), "ip": ip},
                      sink=services.audit_sink)
        except DependencyError:
            click.echo("Warning: audit log entry was not written", err=True)
        click.echo(f"Lockout cleared for {normalize_email(email)} from {ip}")

    @app.cli.command("mfa-status")
    @click.argument("user_id")
    def mfa_status(user_id):
        """Show MFA state for USER_ID."""
        status = current_security().mfa.get_status(user_id)
        click.echo(
            f"enabled={status.enabled} verified={status.verified} "
            f"backup_codes_remaining={status.backup_codes_remaining}"
        )

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
