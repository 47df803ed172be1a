"""Portal blueprint — /api/portal*

Magic-link access to the Stripe billing portal for customers without an
account.

Routes:
- POST /api/portal/request  — { email } -> always the same generic 200
- POST /api/portal          — { token } -> { url }
- GET  /api/portal?token=   — same as POST, for links opened directly
"""

import logging

from flask import Blueprint, jsonify, request

from storefront.extensions import limiter
from storefront.services.portal_service import GENERIC_ACK, exchange_token, request_portal_link

logger = logging.getLogger(__name__)

portal_bp = Blueprint("portal", __name__, url_prefix="/api/portal")


def _generic_ack():
    return jsonify(ok=True, message=GENERIC_ACK), 200


# ──────────────────────────────────────────────
# POST /api/portal/request
# ──────────────────────────────────────────────

@portal_bp.route("/request", methods=["POST"])
@limiter.limit("5 per minute")
def request_link():
    """Request a magic link by email.

    The response never depends on whether the email is known, and
    failures are logged rather than surfaced.
    """
    data = request.get_json(silent=True)
    email = data.get("email") if isinstance(data, dict) else None

    try:
        request_portal_link(email if isinstance(email, str) else "")
    except Exception as e:
        logger.error(f"Portal link request failed: {e}", exc_info=True)

    return _generic_ack()


# ──────────────────────────────────────────────
# POST/GET /api/portal
# ──────────────────────────────────────────────

@portal_bp.route("", methods=["GET", "POST"])
@limiter.limit("20 per minute")
def portal():
    """Exchange a magic-link token for a Stripe billing portal URL."""
    data = request.get_json(silent=True)
    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token.strip():
        token = request.args.get("token", "")

    url = exchange_token(token)
    return jsonify(url=url), 200
