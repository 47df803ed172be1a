"""Price catalog — maps (product, purchase type, recurrence) to Stripe price IDs.

The catalog is built once in create_app() from config and stored on
app.extensions["price_catalog"]. It is never mutated afterwards.

Responsible for:
- Forward lookup used by checkout (missing entry -> ConfigurationError)
- Reverse lookup used by webhook reconciliation (missing entry -> UNKNOWN_PRODUCT)
"""

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType

from flask import current_app

from storefront.errors import ConfigurationError

logger = logging.getLogger(__name__)

ONE_TIME = "one-time"
RECURRING = "recurring"


@dataclass(frozen=True)
class CatalogEntry:
    product_slug: str
    purchase_type: str
    recurrence_weeks: int = None

    @property
    def is_unknown(self):
        return self is UNKNOWN_PRODUCT


# Recorded on order items whose price matches nothing in the catalog.
UNKNOWN_PRODUCT = CatalogEntry("unknown", ONE_TIME, None)


def slug_to_env_key(slug):
    """'lemon-yuzu' -> 'LEMON_YUZU'."""
    return re.sub(r"[^A-Z0-9]+", "_", slug.strip().upper())


def price_env_name(product_slug, purchase_type, recurrence=None):
    """Name of the config key holding the price ID for one combination."""
    key = slug_to_env_key(product_slug)
    if purchase_type == ONE_TIME:
        return f"STRIPE_PRICE_{key}_ONETIME"
    return f"STRIPE_PRICE_{key}_SUB_{recurrence}W"


class PriceCatalog:
    """Immutable two-way lookup between catalog entries and price IDs."""

    def __init__(self, prices, recurrence_options):
        # prices: {CatalogEntry: price_id}
        self.recurrence_options = tuple(str(r) for r in recurrence_options)
        self._by_entry = MappingProxyType(dict(prices))

        by_price = {}
        for entry, price_id in prices.items():
            if price_id in by_price:
                logger.warning(
                    f"Price {price_id} is configured for both "
                    f"{by_price[price_id]} and {entry}; keeping the first"
                )
                continue
            by_price[price_id] = entry
        self._by_price = MappingProxyType(by_price)

    @classmethod
    def from_config(cls, config):
        """Build the catalog from PRODUCT_SLUGS, RECURRENCE_OPTIONS and STRIPE_PRICES."""
        slugs = config.get("PRODUCT_SLUGS") or []
        recurrences = config.get("RECURRENCE_OPTIONS") or []
        env = config.get("STRIPE_PRICES") or {}

        prices = {}
        missing = []
        for slug in slugs:
            combos = [(ONE_TIME, None)] + [(RECURRING, r) for r in recurrences]
            for purchase_type, recurrence in combos:
                name = price_env_name(slug, purchase_type, recurrence)
                price_id = env.get(name)
                if not price_id:
                    missing.append(name)
                    continue
                weeks = int(recurrence) if recurrence is not None else None
                prices[CatalogEntry(slug, purchase_type, weeks)] = price_id

        if missing:
            logger.warning(
                f"Price catalog incomplete, missing: {', '.join(missing)}"
            )
        return cls(prices, recurrences)

    def __len__(self):
        return len(self._by_entry)

    def entries(self):
        """(CatalogEntry, price_id) pairs, in configuration order."""
        return list(self._by_entry.items())

    def price_id_for(self, product_slug, purchase_type, recurrence=None):
        """Resolve the Stripe price ID for one cart line.

        Raises ConfigurationError if the combination isn't configured.
        """
        weeks = None
        if purchase_type == RECURRING:
            if recurrence is None:
                raise ConfigurationError(
                    f"No recurrence given for recurring {product_slug}"
                )
            weeks = int(recurrence)
        entry = CatalogEntry(product_slug, purchase_type, weeks)
        price_id = self._by_entry.get(entry)
        if not price_id:
            raise ConfigurationError(
                f"Missing price: {price_env_name(product_slug, purchase_type, recurrence)}"
            )
        return price_id

    def product_for(self, price_id):
        """Reverse lookup. Returns UNKNOWN_PRODUCT rather than raising."""
        if not price_id:
            return UNKNOWN_PRODUCT
        return self._by_price.get(price_id, UNKNOWN_PRODUCT)


def init_catalog(app):
    """Build the catalog once and attach it to the app."""
    catalog = PriceCatalog.from_config(app.config)
    app.extensions["price_catalog"] = catalog
    return catalog


def get_catalog():
    """The catalog for the current app."""
    try:
        return current_app.extensions["price_catalog"]
    except KeyError:
        raise ConfigurationError("Price catalog not initialised") from None
