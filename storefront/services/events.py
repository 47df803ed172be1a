"""Typed views over untyped Stripe webhook events.

Stripe payloads are partially present and vary across API versions, so
nothing here assumes a key exists. parse_event() turns the raw dict into
one variant per event type the reconciler understands, or UnhandledEvent.
"""

from dataclasses import dataclass
from typing import Optional

from storefront.services.stripe_client import id_of
from storefront.services.utils import normalize_email

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: Optional[str]
    session_id: Optional[str]
    mode: Optional[str] = None
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    currency: Optional[str] = None
    amount_subtotal: Optional[int] = None
    amount_total: Optional[int] = None
    payment_status: Optional[str] = None
    shipping_name: Optional[str] = None
    shipping_address: Optional[dict] = None

    @property
    def is_subscription(self):
        return self.mode == "subscription"


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: Optional[str]
    event_type: Optional[str]


def _dict(value):
    return value if isinstance(value, dict) else {}


def _int(value):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _shipping(session):
    """Shipping lives under shipping_details (older API versions) or
    collected_information.shipping_details (newer ones)."""
    shipping = session.get("shipping_details")
    if not isinstance(shipping, dict):
        shipping = _dict(session.get("collected_information")).get("shipping_details")
    shipping = _dict(shipping)
    address = shipping.get("address")
    return shipping.get("name"), address if isinstance(address, dict) else None


def parse_checkout_completed(event_id, session):
    details = _dict(session.get("customer_details"))
    email = details.get("email") or session.get("customer_email")
    shipping_name, shipping_address = _shipping(session)

    return CheckoutCompleted(
        event_id=event_id,
        session_id=id_of(session.get("id")),
        mode=session.get("mode"),
        payment_intent_id=id_of(session.get("payment_intent")),
        subscription_id=id_of(session.get("subscription")),
        customer_id=id_of(session.get("customer")),
        customer_email=normalize_email(email) or None,
        currency=session.get("currency"),
        amount_subtotal=_int(session.get("amount_subtotal")),
        amount_total=_int(session.get("amount_total")),
        payment_status=session.get("payment_status"),
        shipping_name=shipping_name,
        shipping_address=shipping_address,
    )


def parse_event(event):
    """Parse a verified event dict into a typed variant."""
    event = _dict(event)
    event_id = event.get("id")
    event_type = event.get("type")
    obj = _dict(_dict(event.get("data")).get("object"))

    if event_type == CHECKOUT_COMPLETED:
        return parse_checkout_completed(event_id, obj)
    return UnhandledEvent(event_id=event_id, event_type=event_type)
