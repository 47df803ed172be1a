"""Checkout service — validates carts and creates Stripe Checkout Sessions.

Responsible for:
- Validating the cart payload (first failure wins)
- Resolving each line to a price ID via the catalog
- Creating one hosted session in payment or subscription mode
- Summarising a session for the post-purchase page

Nothing is persisted here. Orders are written only by the webhook
reconciler once Stripe confirms completion.
"""

import logging

import stripe
from flask import current_app

from storefront.errors import UpstreamError, ValidationError
from storefront.services.catalog import ONE_TIME, RECURRING, get_catalog
from storefront.services.stripe_client import as_dict, get_stripe, id_of
from storefront.services.utils import is_valid_email, normalize_email

logger = logging.getLogger(__name__)

# Older clients send "onetime" / "subscribe".
_MODE_ALIASES = {
    ONE_TIME: ONE_TIME,
    "onetime": ONE_TIME,
    RECURRING: RECURRING,
    "subscribe": RECURRING,
}


def _first(data, *keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def parse_cart_item(raw, max_quantity, recurrence_options):
    """Validate one cart line. Returns (product_slug, mode, recurrence, quantity)."""
    if not isinstance(raw, dict):
        raise ValidationError("items", "Each item must be an object.")

    slug = _first(raw, "product_slug", "productSlug", "flavor")
    slug = slug.strip() if isinstance(slug, str) else ""
    if not slug:
        raise ValidationError("product_slug", "Missing product.")

    raw_mode = _first(raw, "mode", "type")
    mode = _MODE_ALIASES.get(raw_mode) if isinstance(raw_mode, str) else None
    if mode is None:
        raise ValidationError("mode", "Invalid mode.")

    recurrence = None
    if mode == RECURRING:
        recurrence = _first(raw, "recurrence", "frequency")
        recurrence = str(recurrence) if recurrence is not None else None
        if recurrence not in recurrence_options:
            raise ValidationError("recurrence", "Invalid recurrence.")

    quantity = raw.get("quantity")
    # bool is an int subclass; reject it explicitly
    if (
        not isinstance(quantity, int)
        or isinstance(quantity, bool)
        or quantity < 1
        or quantity > max_quantity
    ):
        raise ValidationError("quantity", "Invalid quantity.")

    return slug, mode, recurrence, quantity


def validate_cart(items, email=None):
    """Validate a whole cart.

    Returns (lines, mode, email) where lines is a list of
    (product_slug, mode, recurrence, quantity) tuples, one per distinct
    product, mode and recurrence.
    Raises ValidationError naming the first violated field.
    """
    email = normalize_email(email)
    if email and not is_valid_email(email):
        raise ValidationError("email", "Invalid email.")

    if not isinstance(items, list) or not items:
        raise ValidationError("items", "No checkout items provided.")

    max_quantity = current_app.config.get("CHECKOUT_MAX_QUANTITY", 20)
    recurrence_options = get_catalog().recurrence_options

    parsed = [parse_cart_item(raw, max_quantity, recurrence_options) for raw in items]

    modes = {line[1] for line in parsed}
    if len(modes) > 1:
        raise ValidationError(
            "mode",
            "You can't checkout subscription and one-time items together. "
            "Please checkout separately.",
        )

    return merge_cart_lines(parsed, max_quantity), modes.pop(), email or None


def merge_cart_lines(lines, max_quantity):
    """Fold lines for the same product, mode and recurrence into one.

    Each line becomes its own Stripe line item with the same price, and
    order items are unique per price, so repeats must be summed here.
    Keeps first-seen order.
    """
    merged = {}
    for slug, mode, recurrence, quantity in lines:
        key = (slug, mode, recurrence)
        merged[key] = merged.get(key, 0) + quantity
        if merged[key] > max_quantity:
            raise ValidationError("quantity", "Invalid quantity.")
    return [key + (quantity,) for key, quantity in merged.items()]


def create_checkout_session(items, email=None):
    """Create a Stripe Checkout Session for a validated cart.

    Returns the hosted checkout URL.
    Raises ValidationError, ConfigurationError or UpstreamError.
    """
    lines, mode, email = validate_cart(items, email)
    catalog = get_catalog()

    line_items = [
        {
            "price": catalog.price_id_for(slug, line_mode, recurrence),
            "quantity": quantity,
        }
        for slug, line_mode, recurrence, quantity in lines
    ]

    stripe_mode = "subscription" if mode == RECURRING else "payment"
    site_url = current_app.config["PUBLIC_SITE_URL"]

    params = {
        "mode": stripe_mode,
        "line_items": line_items,
        "billing_address_collection": "required",
        "shipping_address_collection": {
            "allowed_countries": current_app.config["CHECKOUT_ALLOWED_COUNTRIES"],
        },
        "success_url": f"{site_url}/order-success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{site_url}/cart",
        "metadata": {
            "source": current_app.config["CHECKOUT_METADATA_SOURCE"],
            "mode": stripe_mode,
        },
    }
    if email:
        # Prefill so the customer doesn't type it twice
        params["customer_email"] = email
    if stripe_mode == "payment":
        # Subscriptions always get a customer; one-time payments need asking
        params["customer_creation"] = "always"
        if email:
            params["payment_intent_data"] = {"receipt_email": email}

    client = get_stripe()
    try:
        session = client.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout session create failed: {e}")
        raise UpstreamError(str(e)) from e

    if isinstance(session, dict):
        url = session.get("url")
    else:
        url = getattr(session, "url", None)
    if not url:
        logger.error("Stripe session created, but no URL returned")
        raise UpstreamError("Stripe session created, but no URL returned")

    logger.info(
        f"Checkout session created: mode={stripe_mode} lines={len(line_items)}"
    )
    return url


def get_session_summary(session_id):
    """Minimal session info so the success page can branch on mode."""
    client = get_stripe()
    try:
        session = client.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe session retrieve failed for {session_id}: {e}")
        raise UpstreamError(str(e)) from e

    data = as_dict(session)
    details = data.get("customer_details") or {}
    return {
        "id": data.get("id"),
        "mode": data.get("mode"),  # payment | subscription | setup
        "customer_email": details.get("email") or data.get("customer_email"),
        "payment_status": data.get("payment_status"),
        "subscription": id_of(data.get("subscription")),
    }
