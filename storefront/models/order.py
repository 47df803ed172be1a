"""Order models.

- Order: one completed Stripe Checkout Session. stripe_checkout_session_id
  is the idempotency key for webhook reconciliation.
- OrderItem: one purchased line within an Order. Deduplicated per order by
  price ID and, when Stripe supplies one, by line-item ID.

Both uniqueness rules live in the database, not in application code, so
concurrent webhook deliveries converge on the same rows.
"""

import uuid

from storefront.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_checkout_session_id = db.Column(db.String(255), nullable=False)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True)
    stripe_customer_id = db.Column(
        db.String(255), nullable=True
    )  # required for the billing portal
    customer_email = db.Column(db.String(255), nullable=True)  # normalized
    currency = db.Column(db.String(10), nullable=False, default="usd")
    amount_subtotal = db.Column(db.Integer, nullable=True)  # minor units
    amount_total = db.Column(db.Integer, nullable=True)
    is_subscription = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(50), nullable=False, default="paid")
    shipping_name = db.Column(db.String(255), nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "stripe_checkout_session_id", name="orders_checkout_session_unique"
        ),
        db.Index("orders_payment_intent_idx", "stripe_payment_intent_id"),
        db.Index("orders_subscription_idx", "stripe_subscription_id"),
        db.Index("orders_customer_email_idx", "customer_email"),
    )

    # --- Relationships ---
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    def __repr__(self):
        return f"<Order {self.stripe_checkout_session_id} ({self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    stripe_price_id = db.Column(db.String(255), nullable=True)  # e.g. price_123
    stripe_line_item_id = db.Column(
        db.String(255), nullable=True
    )  # e.g. li_123, usually present
    product_slug = db.Column(db.String(100), nullable=False)  # "unknown" if unmapped
    purchase_type = db.Column(db.String(20), nullable=False)  # one-time | recurring
    recurrence_weeks = db.Column(db.Integer, nullable=True)  # recurring only
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_amount = db.Column(db.Integer, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, server_default=db.func.now()
    )

    __table_args__ = (
        db.Index("order_items_order_id_idx", "order_id"),
        db.UniqueConstraint(
            "order_id", "stripe_price_id", name="order_items_order_price_unique"
        ),
        db.UniqueConstraint(
            "order_id", "stripe_line_item_id",
            name="order_items_order_line_item_unique",
        ),
        db.CheckConstraint("quantity >= 1", name="order_items_quantity_positive"),
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_slug} x{self.quantity}>"
