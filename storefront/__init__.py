import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from storefront.config import config_by_name
from storefront.errors import StorefrontError
from storefront.extensions import db, migrate, limiter

logger = logging.getLogger(__name__)


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
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from storefront import models  # noqa: F401

    # --- Price catalog (immutable, built once) ---
    from storefront.services.catalog import init_catalog
    init_catalog(app)

    # --- Register blueprints ---
    from storefront.blueprints.checkout import checkout_bp
    from storefront.blueprints.webhooks import webhooks_bp
    from storefront.blueprints.portal import portal_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(portal_bp)

    # --- Health check ---
    @app.route("/api/health")
    def health():
        return jsonify(ok=True)

    register_error_handlers(app)

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
        # Control referrer information (tokens travel in query strings)
        response.headers["Referrer-Policy"] = "no-referrer"
        # JSON API: nothing here should ever be rendered or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'; base-uri 'none';"
        )
        response.headers["Cache-Control"] = "no-store"
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


def register_error_handlers(app):
    """JSON error responses. Internal detail goes to the log only."""

    @app.errorhandler(StorefrontError)
    def storefront_error(e):
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__}: {e}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify(error=e.description or e.name), e.code

    @app.errorhandler(500)
    def server_error(e):
        original = getattr(e, "original_exception", None)
        logger.error(f"Unhandled error: {original or e}", exc_info=original)
        return jsonify(error="Internal server error."), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("show-catalog")
    def show_catalog():
        """Print every configured catalog entry and its Stripe price ID."""
        from storefront.services.catalog import get_catalog

        catalog = get_catalog()
        click.echo(f"{len(catalog)} configured prices")
        for entry, price_id in catalog.entries():
            recurrence = (
                f"every {entry.recurrence_weeks}w" if entry.recurrence_weeks else "-"
            )
            click.echo(
                f"  {entry.product_slug:<24} {entry.purchase_type:<10} "
                f"{recurrence:<10} {price_id}"
            )

    @app.cli.command("verify-stripe-prices")
    @click.option("--offline", is_flag=True, help="Only check configuration, don't call Stripe.")
    def verify_stripe_prices(offline):
        """Verify every catalog price ID is configured and exists in Stripe.

        Run with prod env vars to confirm Live prices; run with test vars
        for Test mode.
        """
        import stripe as _stripe

        from storefront.services.catalog import (
            ONE_TIME,
            RECURRING,
            price_env_name,
        )

        prices = app.config.get("STRIPE_PRICES") or {}
        combos = []
        for slug in app.config.get("PRODUCT_SLUGS") or []:
            combos.append((slug, ONE_TIME, None))
            for recurrence in app.config.get("RECURRENCE_OPTIONS") or []:
                combos.append((slug, RECURRING, recurrence))

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not offline:
            if not api_key:
                click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
                raise SystemExit(1)
            key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
            click.echo(f"Stripe key mode: {key_mode}")
            _stripe.api_key = api_key

        problems = 0
        for slug, purchase_type, recurrence in combos:
            name = price_env_name(slug, purchase_type, recurrence)
            price_id = prices.get(name)
            if not price_id:
                click.echo(f"  {name}: (not set)")
                problems += 1
                continue
            if offline:
                click.echo(f"  {name}: {price_id}")
                continue
            try:
                price = _stripe.Price.retrieve(price_id)
                livemode = getattr(price, "livemode", "?")
                active = getattr(price, "active", "?")
                click.echo(f"  {name}: {price_id} livemode={livemode} active={active}")
                if livemode is True and key_mode != "Live":
                    click.echo("    WARNING: This price is Live but your key is Test.")
                elif livemode is False and key_mode == "Live":
                    click.echo("    WARNING: This price is Test but your key is Live.")
            except _stripe.StripeError as e:
                click.echo(f"  {name}: {price_id}")
                click.echo(f"    ERROR: {e}")
                problems += 1

        click.echo("")
        click.echo(f"{len(combos)} combinations checked, {problems} problem(s).")
        if problems:
            raise SystemExit(1)
