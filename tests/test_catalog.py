"""Tests for the price catalog (forward and reverse lookups)."""

import pytest

from storefront.errors import ConfigurationError
from storefront.services.catalog import (
    ONE_TIME,
    RECURRING,
    UNKNOWN_PRODUCT,
    CatalogEntry,
    PriceCatalog,
    get_catalog,
    price_env_name,
    slug_to_env_key,
)


class TestEnvNames:
    def test_slug_to_env_key(self):
        assert slug_to_env_key("lemon-yuzu") == "LEMON_YUZU"
        assert slug_to_env_key(" raspberry dragonfruit ") == "RASPBERRY_DRAGONFRUIT"

    def test_price_env_name(self):
        assert price_env_name("lemon-yuzu", ONE_TIME) == "STRIPE_PRICE_LEMON_YUZU_ONETIME"
        assert price_env_name("lemon-yuzu", RECURRING, "4") == "STRIPE_PRICE_LEMON_YUZU_SUB_4W"


class TestForwardLookup:
    """price_id_for(), used by checkout."""

    def test_one_time_price(self, app):
        assert get_catalog().price_id_for("strawberry-guava", ONE_TIME) == "price_sg_once"

    def test_recurring_price(self, app):
        assert get_catalog().price_id_for("lemon-yuzu", RECURRING, "4") == "price_ly_4w"

    def test_recurrence_accepts_int(self, app):
        assert get_catalog().price_id_for("lemon-yuzu", RECURRING, 6) == "price_ly_6w"

    def test_missing_combination_raises(self, app):
        with pytest.raises(ConfigurationError, match="STRIPE_PRICE_RASPBERRY_DRAGONFRUIT_SUB_2W"):
            get_catalog().price_id_for("raspberry-dragonfruit", RECURRING, "2")

    def test_unknown_product_raises(self, app):
        with pytest.raises(ConfigurationError):
            get_catalog().price_id_for("mango", ONE_TIME)

    def test_recurring_without_recurrence_raises(self, app):
        with pytest.raises(ConfigurationError):
            get_catalog().price_id_for("lemon-yuzu", RECURRING)


class TestReverseLookup:
    """product_for(), used by webhook reconciliation."""

    def test_known_one_time_price(self, app):
        entry = get_catalog().product_for("price_rd_once")
        assert entry == CatalogEntry("raspberry-dragonfruit", ONE_TIME, None)
        assert not entry.is_unknown

    def test_known_recurring_price(self, app):
        entry = get_catalog().product_for("price_sg_2w")
        assert entry == CatalogEntry("strawberry-guava", RECURRING, 2)

    def test_unmatched_price_is_unknown(self, app):
        entry = get_catalog().product_for("price_nope")
        assert entry is UNKNOWN_PRODUCT
        assert entry.product_slug == "unknown"
        assert entry.purchase_type == ONE_TIME
        assert entry.recurrence_weeks is None

    def test_none_is_unknown(self, app):
        assert get_catalog().product_for(None).is_unknown


class TestCatalogConstruction:
    def test_built_once_from_config(self, app):
        # 3 one-time + 6 subscription prices configured in TestConfig
        assert len(get_catalog()) == 9
        assert app.extensions["price_catalog"] is get_catalog()

    def test_entries_are_read_only(self, app):
        with pytest.raises(TypeError):
            get_catalog()._by_entry[CatalogEntry("x", ONE_TIME)] = "price_x"

    def test_from_config_skips_blank_ids(self):
        catalog = PriceCatalog.from_config({
            "PRODUCT_SLUGS": ["lemon-yuzu"],
            "RECURRENCE_OPTIONS": ["2"],
            "STRIPE_PRICES": {
                "STRIPE_PRICE_LEMON_YUZU_ONETIME": "price_a",
                "STRIPE_PRICE_LEMON_YUZU_SUB_2W": "",
            },
        })
        assert len(catalog) == 1
        assert catalog.recurrence_options == ("2",)

    def test_duplicate_price_keeps_first_entry(self):
        first = CatalogEntry("lemon-yuzu", ONE_TIME)
        second = CatalogEntry("strawberry-guava", ONE_TIME)
        catalog = PriceCatalog({first: "price_same", second: "price_same"}, ["2"])
        assert catalog.product_for("price_same") == first
