"""Checkout blueprint — /api/checkout*

Routes:
- POST /api/checkout          — validate cart, create Stripe Checkout Session
- GET  /api/checkout-session  — session summary for the order-success page

Errors (ValidationError, ConfigurationError, UpstreamError) propagate to the
JSON error handlers registered in create_app().
"""

import logging

from flask import Blueprint, jsonify, request

from storefront.errors import ValidationError
from storefront.extensions import limiter
from storefront.services.checkout_service import create_checkout_session, get_session_summary

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


# ──────────────────────────────────────────────
# POST /api/checkout
# ──────────────────────────────────────────────

@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit("20 per minute")
def checkout():
    """Create a Stripe Checkout Session for the posted cart.

    Expects: { items: [{product_slug, mode, recurrence?, quantity}], email? }
    A single { item: {...} } is accepted for older clients.
    Returns: { url } or 400 { error, field }.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("items", "Invalid request.")

    items = data.get("items")
    if items is None and isinstance(data.get("item"), dict):
        items = [data["item"]]

    email = data.get("email")
    if email is not None and not isinstance(email, str):
        raise ValidationError("email", "Invalid email.")

    url = create_checkout_session(items, email=email)
    return jsonify(url=url), 200


# ──────────────────────────────────────────────
# GET /api/checkout-session?session_id=cs_...
# ──────────────────────────────────────────────

@checkout_bp.route("/checkout-session", methods=["GET"])
@limiter.limit("60 per minute")
def checkout_session():
    """Read-only summary so the success page can show subscription controls."""
    session_id = (request.args.get("session_id") or "").strip()
    if not session_id:
        raise ValidationError("session_id", "session_id is required")

    return jsonify(get_session_summary(session_id)), 200
