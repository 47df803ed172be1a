"""Stripe client configuration.

Every service calls get_stripe() before touching the SDK so the API key and
network settings always come from the current app config.
"""

import stripe
from flask import current_app

from storefront.errors import ConfigurationError


def configure_stripe():
    """Configure the Stripe module from app config."""
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise ConfigurationError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = api_key
    stripe.api_version = current_app.config.get("STRIPE_API_VERSION")
    stripe.max_network_retries = current_app.config.get(
        "STRIPE_MAX_NETWORK_RETRIES", 2
    )


def get_stripe():
    """Get the configured Stripe module."""
    configure_stripe()
    return stripe


def as_dict(obj):
    """Plain-dict view of a Stripe API object (or pass a dict through)."""
    if obj is None or isinstance(obj, dict):
        return obj
    return obj.to_dict()


def id_of(value):
    """Stripe fields are either an ID string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)
