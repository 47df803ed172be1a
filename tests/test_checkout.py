"""Tests for the checkout blueprint and checkout service.

Covers:
- Cart validation (first failure wins, field named in the response)
- Mixed one-time/recurring carts rejected
- Stripe Checkout Session parameters for payment and subscription mode
- Legacy item keys
- Missing catalog prices and Stripe failures
- Session summary for the order-success page
"""

from unittest.mock import MagicMock, patch

import stripe

from storefront.models.order import Order

SESSION_CREATE = "storefront.services.checkout_service.stripe.checkout.Session.create"
SESSION_RETRIEVE = "storefront.services.checkout_service.stripe.checkout.Session.retrieve"
CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_123"


def item(slug="lemon-yuzu", mode="one-time", quantity=1, **extra):
    data = {"product_slug": slug, "mode": mode, "quantity": quantity}
    data.update(extra)
    return data


def post_checkout(client, body):
    return client.post("/api/checkout", json=body)


class TestCheckoutSession:
    """Successful carts -> one hosted Stripe session."""

    @patch(SESSION_CREATE)
    def test_recurring_cart_uses_subscription_mode(self, mock_create, client):
        mock_create.return_value = {"id": "cs_test_123", "url": CHECKOUT_URL}

        resp = post_checkout(client, {
            "items": [item(mode="recurring", recurrence="4", quantity=1)],
        })

        assert resp.status_code == 200
        assert resp.get_json() == {"url": CHECKOUT_URL}
        params = mock_create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_ly_4w", "quantity": 1}]
        assert "customer_creation" not in params
        assert params["metadata"] == {"source": "kimora-site", "mode": "subscription"}

    @patch(SESSION_CREATE)
    def test_one_time_cart_uses_payment_mode(self, mock_create, client):
        mock_create.return_value = {"url": CHECKOUT_URL}

        resp = post_checkout(client, {
            "items": [item(quantity=2), item(slug="strawberry-guava", quantity=1)],
            "email": " Buyer@Example.com ",
        })

        assert resp.status_code == 200
        params = mock_create.call_args.kwargs
        assert params["mode"] == "payment"
        assert params["line_items"] == [
            {"price": "price_ly_once", "quantity": 2},
            {"price": "price_sg_once", "quantity": 1},
        ]
        assert params["customer_creation"] == "always"
        assert params["customer_email"] == "buyer@example.com"
        assert params["payment_intent_data"] == {"receipt_email": "buyer@example.com"}

    @patch(SESSION_CREATE)
    def test_session_urls_and_collection(self, mock_create, client):
        mock_create.return_value = {"url": CHECKOUT_URL}

        post_checkout(client, {"items": [item()]})

        params = mock_create.call_args.kwargs
        assert params["success_url"] == (
            "http://localhost:5173/order-success?session_id={CHECKOUT_SESSION_ID}"
        )
        assert params["cancel_url"] == "http://localhost:5173/cart"
        assert params["billing_address_collection"] == "required"
        assert params["shipping_address_collection"] == {"allowed_countries": ["US"]}
        assert "customer_email" not in params

    @patch(SESSION_CREATE)
    def test_legacy_item_keys(self, mock_create, client):
        """Older clients post a single item with flavor/type/frequency."""
        mock_create.return_value = {"url": CHECKOUT_URL}

        resp = post_checkout(client, {
            "item": {"flavor": "lemon-yuzu", "type": "subscribe", "frequency": 2, "quantity": 3},
        })

        assert resp.status_code == 200
        assert mock_create.call_args.kwargs["line_items"] == [
            {"price": "price_ly_2w", "quantity": 3},
        ]

    @patch(SESSION_CREATE)
    def test_stripe_object_response(self, mock_create, client):
        mock_create.return_value = MagicMock(url=CHECKOUT_URL)

        resp = post_checkout(client, {"items": [item()]})

        assert resp.get_json() == {"url": CHECKOUT_URL}

    @patch(SESSION_CREATE)
    def test_nothing_persisted(self, mock_create, client):
        mock_create.return_value = {"url": CHECKOUT_URL}
        post_checkout(client, {"items": [item()]})
        assert Order.query.count() == 0

    @patch(SESSION_CREATE)
    def test_repeated_product_lines_are_merged(self, mock_create, client):
        """Same product and mode twice -> one Stripe line carrying the total."""
        mock_create.return_value = {"url": CHECKOUT_URL}

        resp = post_checkout(client, {
            "items": [
                item(quantity=1),
                item(slug="strawberry-guava"),
                item(mode="onetime", quantity=2),
            ],
        })

        assert resp.status_code == 200
        assert mock_create.call_args.kwargs["line_items"] == [
            {"price": "price_ly_once", "quantity": 3},
            {"price": "price_sg_once", "quantity": 1},
        ]

    @patch(SESSION_CREATE)
    def test_different_recurrences_stay_separate(self, mock_create, client):
        mock_create.return_value = {"url": CHECKOUT_URL}

        post_checkout(client, {
            "items": [
                item(mode="recurring", recurrence="2"),
                item(mode="recurring", recurrence="4"),
            ],
        })

        assert mock_create.call_args.kwargs["line_items"] == [
            {"price": "price_ly_2w", "quantity": 1},
            {"price": "price_ly_4w", "quantity": 1},
        ]


class TestCartValidation:
    """Invalid carts -> 400 naming the offending field, Stripe never called."""

    def assert_rejected(self, client, body, field):
        with patch(SESSION_CREATE) as mock_create:
            resp = post_checkout(client, body)
        assert resp.status_code == 400, resp.get_json()
        assert resp.get_json()["field"] == field
        mock_create.assert_not_called()
        return resp

    def test_mixed_modes_rejected(self, client):
        resp = self.assert_rejected(client, {
            "items": [item(), item(slug="strawberry-guava", mode="recurring", recurrence="2")],
        }, "mode")
        assert "separately" in resp.get_json()["error"]

    def test_missing_items(self, client):
        self.assert_rejected(client, {}, "items")

    def test_empty_items(self, client):
        self.assert_rejected(client, {"items": []}, "items")

    def test_items_not_a_list(self, client):
        self.assert_rejected(client, {"items": "lemon-yuzu"}, "items")

    def test_item_not_an_object(self, client):
        self.assert_rejected(client, {"items": ["lemon-yuzu"]}, "items")

    def test_body_not_an_object(self, client):
        self.assert_rejected(client, [item()], "items")

    def test_missing_product(self, client):
        self.assert_rejected(client, {"items": [item(slug="  ")]}, "product_slug")

    def test_invalid_mode(self, client):
        self.assert_rejected(client, {"items": [item(mode="weekly")]}, "mode")

    def test_non_string_mode(self, client):
        self.assert_rejected(client, {"items": [item(mode=["recurring"])]}, "mode")

    def test_recurring_without_recurrence(self, client):
        self.assert_rejected(client, {"items": [item(mode="recurring")]}, "recurrence")

    def test_recurrence_not_offered(self, client):
        self.assert_rejected(
            client, {"items": [item(mode="recurring", recurrence="3")]}, "recurrence"
        )

    def test_quantity_zero(self, client):
        self.assert_rejected(client, {"items": [item(quantity=0)]}, "quantity")

    def test_quantity_over_max(self, client):
        self.assert_rejected(client, {"items": [item(quantity=21)]}, "quantity")

    def test_merged_quantity_over_max(self, client):
        """Splitting a quantity across lines can't get past the limit."""
        self.assert_rejected(
            client, {"items": [item(quantity=15), item(quantity=6)]}, "quantity"
        )

    def test_quantity_at_max_accepted(self, client):
        with patch(SESSION_CREATE) as mock_create:
            mock_create.return_value = {"url": CHECKOUT_URL}
            resp = post_checkout(client, {"items": [item(quantity=20)]})
        assert resp.status_code == 200

    def test_quantity_string(self, client):
        self.assert_rejected(client, {"items": [item(quantity="2")]}, "quantity")

    def test_quantity_float(self, client):
        self.assert_rejected(client, {"items": [item(quantity=1.5)]}, "quantity")

    def test_quantity_bool(self, client):
        self.assert_rejected(client, {"items": [item(quantity=True)]}, "quantity")

    def test_invalid_email(self, client):
        self.assert_rejected(client, {"items": [item()], "email": "not-an-email"}, "email")

    def test_non_string_email(self, client):
        self.assert_rejected(client, {"items": [item()], "email": 42}, "email")

    def test_first_failure_wins(self, client):
        """Missing product is reported before the bad quantity on the same item."""
        self.assert_rejected(client, {"items": [item(slug="", quantity=0)]}, "product_slug")

    def test_item_errors_before_mixed_modes(self, client):
        self.assert_rejected(client, {
            "items": [item(), item(mode="recurring", recurrence="2", quantity=99)],
        }, "quantity")


class TestCheckoutFailures:
    """Deployment gaps and Stripe failures."""

    @patch(SESSION_CREATE)
    def test_missing_catalog_price_returns_500(self, mock_create, client):
        """raspberry-dragonfruit has no subscription prices in the test catalog."""
        resp = post_checkout(client, {
            "items": [item(slug="raspberry-dragonfruit", mode="recurring", recurrence="2")],
        })

        assert resp.status_code == 500
        body = resp.get_json()
        # Operator detail (env var name) stays in the logs
        assert "STRIPE_PRICE" not in body["error"]
        mock_create.assert_not_called()

    @patch(SESSION_CREATE)
    def test_stripe_error_returns_502(self, mock_create, client):
        mock_create.side_effect = stripe.APIConnectionError("network down")

        resp = post_checkout(client, {"items": [item()]})

        assert resp.status_code == 502
        assert "network down" not in resp.get_json()["error"]

    @patch(SESSION_CREATE)
    def test_session_without_url_returns_502(self, mock_create, client):
        mock_create.return_value = {"id": "cs_test_123", "url": None}

        resp = post_checkout(client, {"items": [item()]})

        assert resp.status_code == 502


class TestSessionSummary:
    """GET /api/checkout-session."""

    @patch(SESSION_RETRIEVE)
    def test_summary_fields(self, mock_retrieve, client):
        mock_retrieve.return_value = {
            "id": "cs_test_123",
            "mode": "subscription",
            "customer_details": {"email": "buyer@example.com"},
            "customer_email": None,
            "payment_status": "paid",
            "subscription": {"id": "sub_1", "object": "subscription"},
        }

        resp = client.get("/api/checkout-session?session_id=cs_test_123")

        assert resp.status_code == 200
        assert resp.get_json() == {
            "id": "cs_test_123",
            "mode": "subscription",
            "customer_email": "buyer@example.com",
            "payment_status": "paid",
            "subscription": "sub_1",
        }
        mock_retrieve.assert_called_once_with("cs_test_123")

    @patch(SESSION_RETRIEVE)
    def test_falls_back_to_customer_email(self, mock_retrieve, client):
        mock_retrieve.return_value = {
            "id": "cs_test_123",
            "mode": "payment",
            "customer_email": "prefilled@example.com",
            "payment_status": "paid",
            "subscription": None,
        }

        resp = client.get("/api/checkout-session?session_id=cs_test_123")

        assert resp.get_json()["customer_email"] == "prefilled@example.com"
        assert resp.get_json()["subscription"] is None

    def test_missing_session_id_returns_400(self, client):
        resp = client.get("/api/checkout-session")
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "session_id"

    @patch(SESSION_RETRIEVE)
    def test_stripe_error_returns_502(self, mock_retrieve, client):
        mock_retrieve.side_effect = stripe.InvalidRequestError("No such session", "id")

        resp = client.get("/api/checkout-session?session_id=cs_missing")

        assert resp.status_code == 502
