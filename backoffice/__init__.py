import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from backoffice.config import config_by_name
from backoffice.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from backoffice import models  # noqa: F401

    # --- Shared services (one per process) ---
    from backoffice.services.customer_lookup import CustomerLookupService
    from backoffice.services.nurture_service import ReferralNurtureScheduler
    from backoffice.services.servicetitan import ServiceTitanClient

    servicetitan = ServiceTitanClient.from_config(app.config)
    app.extensions["servicetitan"] = servicetitan
    app.extensions["customer_lookup"] = CustomerLookupService(
        servicetitan, app.config["CUSTOMER_LOOKUP_SOURCE"]
    )
    app.extensions["nurture_scheduler"] = ReferralNurtureScheduler(app.config)

    # --- Register blueprints ---
    from backoffice.blueprints.auth import auth_bp
    from backoffice.blueprints.admin import admin_bp
    from backoffice.blueprints.scheduler import scheduler_bp
    from backoffice.blueprints.customers import customers_bp
    from backoffice.blueprints.referrals import referrals_bp
    from backoffice.blueprints.vouchers import vouchers_bp
    from backoffice.blueprints.email_preferences import email_preferences_bp
    from backoffice.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(referrals_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(email_preferences_bp)
    app.register_blueprint(webhooks_bp)

    # Public JSON APIs hit by the marketing site — no session, no CSRF token
    csrf.exempt(scheduler_bp)
    csrf.exempt(customers_bp)
    csrf.exempt(referrals_bp)
    # One-click unsubscribe is POSTed by mail clients
    csrf.exempt(email_preferences_bp)
    # Webhooks authenticate with a shared secret header
    csrf.exempt(webhooks_bp)

    # --- Health check ---
    @app.route("/health")
    def health():
        return jsonify(status="ok")

    # --- Error handlers (JSON everywhere) ---
    def _error(message, status):
        return jsonify(success=False, error=message), status

    @app.errorhandler(400)
    def bad_request(e):
        return _error(getattr(e, "description", None) or "Bad request.", 400)

    @app.errorhandler(401)
    def unauthorized(e):
        return _error("Authentication required.", 401)

    @app.errorhandler(403)
    def forbidden(e):
        return _error("You do not have access to this resource.", 403)

    @app.errorhandler(404)
    def not_found(e):
        return _error("Not found.", 404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return _error("Method not allowed.", 405)

    @app.errorhandler(429)
    def rate_limited(e):
        return _error("Too many requests. Please try again later.", 429)

    @app.errorhandler(500)
    def server_error(e):
        return _error("Internal server error.", 500)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=()"
        )
        # JSON API only: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@backoffice.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create the office admin account.

        Usage:
            flask seed-admin
            flask seed-admin --email office@example.com --password s3cret
        """
        from backoffice.models.user import User

        email = email.lower().strip()
        if User.query.filter_by(email=email).first():
            click.echo(f"Admin user already exists: {email}")
            return

        admin = User(
            email=email,
            password_hash=generate_password_hash(password),
            full_name="Admin",
            is_admin=True,
        )
        db.session.add(admin)
        db.session.commit()
        click.echo(f"Created admin user: {email}")

    @app.cli.command("process-nurture-emails")
    @click.option("--dry-run", is_flag=True, help="Show what would be sent without actually sending.")
    def process_nurture_emails(dry_run):
        """Send due referral nurture emails. Run from cron (hourly is plenty).

        Usage:
            flask process-nurture-emails
            flask process-nurture-emails --dry-run
        """
        scheduler = app.extensions["nurture_scheduler"]
        summary = scheduler.process_pending_emails(dry_run=dry_run)

        if summary.get("skipped_reason"):
            click.echo(f"Skipped: {summary['skipped_reason']}")
            return

        click.echo(f"Scanned {summary['scanned']} active campaign(s)")
        for item in summary["due"]:
            click.echo(f"  due: campaign {item['campaignId']} email #{item['emailNumber']}")
        if dry_run:
            click.echo("Dry run, nothing sent.")
        else:
            click.echo(f"Sent {summary['sent']}, failed {summary['failed']}")

    @app.cli.command("expire-vouchers")
    def expire_vouchers_command():
        """Mark active vouchers past their expiry date as expired."""
        from backoffice.services.voucher_service import expire_vouchers

        count = expire_vouchers()
        click.echo(f"Expired {count} voucher(s)")

    @app.cli.command("import-customers")
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    def import_customers(csv_path):
        """Replace the local customer lookup cache with a ServiceTitan CSV export.

        Usage:
            flask import-customers customers.csv
        """
        from backoffice.services.customer_import import import_customers_csv

        try:
            stats = import_customers_csv(csv_path)
        except ValueError as e:
            raise click.ClickException(str(e))

        click.echo(
            f"Imported {stats['customers']} customers, {stats['contacts']} contacts "
            f"({stats['skipped']} rows skipped)"
        )
