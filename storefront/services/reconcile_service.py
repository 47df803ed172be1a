"""Webhook reconciliation — turns completed checkouts into Order rows.

Responsible for:
- Verifying Stripe webhook signatures over the raw request body
- Backfilling the Stripe customer ID from the subscription when missing
- Fetching the session's line items from Stripe
- Insert-or-ignore of the Order (keyed by checkout session ID)
- Insert-or-ignore of each OrderItem (keyed by price ID and line-item ID)

Idempotency comes from unique indexes plus ON CONFLICT DO NOTHING, so
redeliveries and concurrent deliveries of one event converge on the same
rows without any application-level locking. Stripe's redelivery is the
retry policy: every failure other than a bad signature comes back as a
"retry" result and the webhook answers 500.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from storefront.errors import ConfigurationError, UpstreamError, WebhookSignatureError
from storefront.extensions import db
from storefront.models.order import Order, OrderItem
from storefront.services.catalog import get_catalog
from storefront.services.events import CheckoutCompleted, parse_event
from storefront.services.stripe_client import as_dict, get_stripe, id_of

logger = logging.getLogger(__name__)

LINE_ITEM_PAGE_SIZE = 100

PROCESSED = "processed"
DUPLICATE = "duplicate"  # already recorded; the conflict was absorbed
IGNORED = "ignored"
RETRY = "retry"


@dataclass(frozen=True)
class ReconcileResult:
    status: str
    order_id: Optional[str] = None
    items_created: int = 0
    message: str = ""

    @property
    def retryable(self):
        return self.status == RETRY


# ──────────────────────────────────────────────
# Signature verification
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header and decode the event.

    `payload` must be the untouched request body. A re-serialized copy
    will not match the signature.

    Returns the event as a plain dict.
    Raises WebhookSignatureError on a missing/invalid signature or body.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set")
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    if not payload:
        raise WebhookSignatureError("Missing raw body for webhook verification")

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookSignatureError("Webhook body is not UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            sig_header,
            webhook_secret,
            current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError("Webhook body is not valid JSON") from e
    if not isinstance(event, dict):
        raise WebhookSignatureError("Webhook body is not an event object")
    return event


# ──────────────────────────────────────────────
# Event dispatch
# ──────────────────────────────────────────────

def handle_webhook_event(event):
    """Process a verified Stripe event.

    Never raises. Returns a ReconcileResult; callers answer 500 when
    result.retryable so Stripe redelivers.
    """
    parsed = parse_event(event)

    if not isinstance(parsed, CheckoutCompleted):
        logger.info(
            f"Webhook event {parsed.event_id} ({parsed.event_type}) not handled, acknowledging"
        )
        return ReconcileResult(IGNORED, message="unhandled_event_type")

    try:
        return reconcile_checkout(parsed)
    except Exception as e:
        db.session.rollback()
        logger.error(
            f"Reconciling checkout {parsed.session_id} (event {parsed.event_id}) "
            f"failed, will retry on redelivery: {e}",
            exc_info=True,
        )
        return ReconcileResult(RETRY, message=type(e).__name__)


def reconcile_checkout(completed):
    """Record one completed checkout. Safe to run any number of times."""
    if not completed.session_id:
        # Retrying the same bytes can't fix a malformed event
        logger.warning(f"checkout.session.completed {completed.event_id} has no session id")
        return ReconcileResult(IGNORED, message="missing_session_id")

    # Provider lookups first: a transient failure here leaves no partial rows.
    customer_id = resolve_customer_id(completed)
    line_items = list_line_items(completed.session_id)

    order_id, order_created = upsert_order(completed, customer_id)
    db.session.commit()  # order row visible before its items

    items_created = attach_line_items(order_id, line_items)
    db.session.commit()

    if order_created or items_created:
        logger.info(
            f"Reconciled checkout {completed.session_id}: order={order_id} "
            f"new_order={order_created} items_created={items_created}/{len(line_items)}"
        )
        status = PROCESSED
    else:
        logger.info(f"Checkout {completed.session_id} already reconciled, conflict ignored")
        status = DUPLICATE

    return ReconcileResult(status, order_id=order_id, items_created=items_created)


# ──────────────────────────────────────────────
# Stripe lookups
# ──────────────────────────────────────────────

def resolve_customer_id(completed):
    """Customer ID from the session, else from its subscription.

    Subscription-mode completions sometimes omit the customer.
    Raises UpstreamError if the subscription lookup fails.
    """
    if completed.customer_id:
        return completed.customer_id
    if not completed.subscription_id:
        return None

    client = get_stripe()
    try:
        subscription = client.Subscription.retrieve(completed.subscription_id)
    except stripe.StripeError as e:
        raise UpstreamError(
            f"Subscription lookup failed for {completed.subscription_id}: {e}"
        ) from e

    customer_id = id_of(as_dict(subscription).get("customer"))
    if customer_id:
        logger.info(
            f"Backfilled customer {customer_id} from subscription {completed.subscription_id}"
        )
    return customer_id


def list_line_items(session_id):
    """All line items for a checkout session, following pagination."""
    client = get_stripe()
    items = []
    params = {"limit": LINE_ITEM_PAGE_SIZE}

    while True:
        try:
            page = as_dict(client.checkout.Session.list_line_items(session_id, **params))
        except stripe.StripeError as e:
            raise UpstreamError(f"Line item lookup failed for {session_id}: {e}") from e

        data = [as_dict(li) for li in (page.get("data") or [])]
        items.extend(data)
        if not page.get("has_more") or not data:
            break
        params["starting_after"] = data[-1].get("id")

    return items


# ──────────────────────────────────────────────
# Persistence
# ──────────────────────────────────────────────

def _insert(table):
    """Dialect-specific INSERT that supports ON CONFLICT DO NOTHING."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")


def upsert_order(completed, customer_id):
    """Insert the Order or find the one a previous delivery created.

    Returns (order_id, created).
    """
    stmt = (
        _insert(Order.__table__)
        .values(
            id=str(uuid.uuid4()),
            stripe_checkout_session_id=completed.session_id,
            stripe_payment_intent_id=completed.payment_intent_id,
            stripe_subscription_id=completed.subscription_id,
            stripe_customer_id=customer_id,
            customer_email=completed.customer_email,
            currency=completed.currency or "usd",
            amount_subtotal=completed.amount_subtotal,
            amount_total=completed.amount_total,
            is_subscription=completed.is_subscription,
            status=completed.payment_status or "paid",
            shipping_name=completed.shipping_name,
            shipping_address=completed.shipping_address,
        )
        .on_conflict_do_nothing(index_elements=["stripe_checkout_session_id"])
    )
    created = db.session.execute(stmt).rowcount == 1

    order_id = db.session.execute(
        select(Order.id).where(
            Order.stripe_checkout_session_id == completed.session_id
        )
    ).scalar_one()

    if not created:
        logger.info(
            f"Order for session {completed.session_id} already recorded, conflict ignored"
        )
        if customer_id:
            backfilled = db.session.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(
                    or_(
                        Order.stripe_customer_id.is_(None),
                        Order.stripe_customer_id != customer_id,
                    )
                )
                .values(stripe_customer_id=customer_id)
            ).rowcount
            if backfilled:
                logger.info(f"Backfilled customer {customer_id} onto order {order_id}")

    return order_id, created


def _quantity(value):
    if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
        return value
    return 1


def merge_line_items(line_items):
    """Collapse Stripe line items that share a price into one.

    Order items are unique per (order, price), so a second line with the
    same price would otherwise be dropped as a duplicate. Quantities are
    summed; the first line's id and unit amount are kept.
    """
    merged = {}
    for li in line_items:
        price = li.get("price")
        price_id = id_of(price)
        quantity = _quantity(li.get("quantity"))
        if price_id in merged:
            merged[price_id]["quantity"] += quantity
            continue
        merged[price_id] = {
            "id": li.get("id"),
            "price_id": price_id,
            "unit_amount": price.get("unit_amount") if isinstance(price, dict) else None,
            "quantity": quantity,
        }
    return list(merged.values())


def attach_line_items(order_id, line_items):
    """Insert-or-ignore every line item. Returns how many rows were new.

    A price the catalog doesn't know is recorded as "unknown" rather than
    failing: the money has already moved.
    """
    catalog = get_catalog()
    created = 0

    for li in merge_line_items(line_items):
        price_id = li["price_id"]

        entry = catalog.product_for(price_id)
        if entry.is_unknown:
            logger.warning(
                f"Order {order_id}: price {price_id} not in catalog, recording as unknown"
            )

        stmt = (
            _insert(OrderItem.__table__)
            .values(
                id=str(uuid.uuid4()),
                order_id=order_id,
                stripe_price_id=price_id,
                stripe_line_item_id=li["id"],
                product_slug=entry.product_slug,
                purchase_type=entry.purchase_type,
                recurrence_weeks=entry.recurrence_weeks,
                quantity=li["quantity"],
                unit_amount=li["unit_amount"],
            )
            .on_conflict_do_nothing()
        )
        inserted = db.session.execute(stmt).rowcount
        if not inserted:
            logger.info(
                f"Order {order_id}: line item {li['id']} / {price_id} already recorded"
            )
        created += inserted

    return created
