"""Portal service — magic-link requests and token-for-portal exchange.

Responsible for:
- Looking up the Stripe customer for an email (most recent order wins)
- Issuing a magic link and emailing it in the background, without
  revealing whether the email is known
- Exchanging a verified token for a Stripe billing portal session URL
"""

import logging
from urllib.parse import quote

import stripe
from flask import current_app
from sqlalchemy import select

from storefront.errors import AuthenticationError, NotFoundError, UpstreamError, ValidationError
from storefront.extensions import db
from storefront.models.order import Order
from storefront.services import email_service
from storefront.services.stripe_client import get_stripe
from storefront.services.token_service import (
    SINGLE_USE,
    consume_token,
    get_strategy,
    issue_token,
    remember_token,
    verify_token,
)
from storefront.services.utils import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

# Returned for every request-a-link call, known email or not.
GENERIC_ACK = "If that email is in our system, you'll receive a link shortly."


def find_customer_id_for_email(email):
    """Stripe customer ID on the most recent order for `email`, or None."""
    return db.session.execute(
        select(Order.stripe_customer_id)
        .where(Order.customer_email == normalize_email(email))
        .order_by(Order.created_at.desc())
        .limit(1)
    ).scalar()


def _portal_links(token):
    site_url = current_app.config["PUBLIC_SITE_URL"]
    return (
        f"{site_url}/manage-subscription?token={quote(token, safe='')}",
        f"{site_url}/manage-subscription",
    )


def _send_portal_link(email, token):
    portal_link, fallback_link = _portal_links(token)
    brand_name = current_app.config.get("MAIL_FROM_NAME", "Kimora Co")
    email_service.send_email(
        to=email,
        subject=f"Manage your {brand_name} subscription",
        template="emails/portal_link.html",
        text_template="emails/portal_link.txt",
        context={
            "brand_name": brand_name,
            "portal_link": portal_link,
            "fallback_link": fallback_link,
            "ttl_minutes": current_app.config.get("PORTAL_TOKEN_TTL_MINUTES", 15),
            "support_address": current_app.config.get("MAIL_SUPPORT_ADDRESS"),
        },
    )


def request_portal_link(email):
    """Email a magic link if `email` belongs to a customer.

    Always returns GENERIC_ACK. The request thread does the same work for
    known and unknown emails (one lookup, one signature) and hands the
    rest to deliver_portal_link() on a background thread.
    """
    email = normalize_email(email)
    if not is_valid_email(email):
        logger.info("Portal link requested with a malformed email, ignoring")
        return GENERIC_ACK

    customer_id = find_customer_id_for_email(email)
    token = issue_token(email)
    email_service.run_in_background(deliver_portal_link, email, token, customer_id)
    return GENERIC_ACK


def deliver_portal_link(email, token, customer_id):
    """Background half of request_portal_link(). Never raises."""
    if not customer_id:
        logger.info(f"Portal link requested for {email}: no customer on file")
        return

    try:
        if get_strategy() == SINGLE_USE:
            remember_token(token, email, stripe_customer_id=customer_id)
            db.session.commit()

        if not email_service.is_configured():
            logger.warning(
                "Portal link not sent — MAIL_USERNAME or MAIL_PASSWORD not configured."
            )
            return

        _send_portal_link(email, token)
        logger.info(f"Portal link sent for {email}")
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to deliver portal link for {email}: {e}", exc_info=True)


def exchange_token(token):
    """Turn a magic-link token into a Stripe billing portal URL.

    Raises ValidationError (no token), AuthenticationError (invalid,
    expired or already used), NotFoundError (no customer for the email)
    or UpstreamError (Stripe failed).
    """
    token = (token or "").strip()
    if not token:
        raise ValidationError("token", "Token is required.")

    email = verify_token(token)
    if email is None:
        logger.info("Portal exchange rejected: invalid or expired token")
        raise AuthenticationError("invalid portal token")

    if get_strategy() == SINGLE_USE:
        if not consume_token(token):
            db.session.rollback()
            logger.warning("Portal exchange rejected: token unknown or already used")
            raise AuthenticationError("portal token already used")
        db.session.commit()

    customer_id = find_customer_id_for_email(email)
    if not customer_id:
        # Safe to say: the caller has proven control of the email
        raise NotFoundError("No customer found for that link.")

    client = get_stripe()
    try:
        portal = client.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{current_app.config['PUBLIC_SITE_URL']}/manage-subscription",
        )
    except stripe.StripeError as e:
        logger.error(f"Portal session create failed for customer {customer_id}: {e}")
        raise UpstreamError(str(e)) from e

    url = portal.get("url") if isinstance(portal, dict) else getattr(portal, "url", None)
    if not url:
        raise UpstreamError("Stripe portal session created, but no URL returned")

    logger.info(f"Portal session created for customer {customer_id}")
    return url
