"""Webhooks blueprint — /stripe/webhook

Receives Stripe webhook events. The raw body is required for signature
verification, so nothing here parses JSON before the service does.
"""

import logging

from flask import Blueprint, jsonify, request

from storefront.errors import WebhookSignatureError
from storefront.services.reconcile_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get the untouched raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET -> 400 on failure
    3. Reconcile (idempotent via unique indexes)
    4. 200 to acknowledge, 500 when the event should be redelivered
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except WebhookSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    # --- Process event (idempotent) ---
    result = handle_webhook_event(event)

    if result.retryable:
        logger.error(f"Webhook processing failed, asking for redelivery: {result.message}")
        return jsonify({"error": "processing_failed"}), 500

    return jsonify({"received": True, "status": result.status}), 200
