"""Create orders, order_items and portal_tokens tables

Revision ID: 7c1e4a9b2d10
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e4a9b2d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('stripe_checkout_session_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=False, server_default='usd'),
        sa.Column('amount_subtotal', sa.Integer(), nullable=True),
        sa.Column('amount_total', sa.Integer(), nullable=True),
        sa.Column('is_subscription', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='paid'),
        sa.Column('shipping_name', sa.String(length=255), nullable=True),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_checkout_session_id', name='orders_checkout_session_unique')
    )
    op.create_index('orders_payment_intent_idx', 'orders', ['stripe_payment_intent_id'])
    op.create_index('orders_subscription_idx', 'orders', ['stripe_subscription_id'])
    op.create_index('orders_customer_email_idx', 'orders', ['customer_email'])

    op.create_table('order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('stripe_price_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_line_item_id', sa.String(length=255), nullable=True),
        sa.Column('product_slug', sa.String(length=100), nullable=False),
        sa.Column('purchase_type', sa.String(length=20), nullable=False),
        sa.Column('recurrence_weeks', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_amount', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'stripe_price_id', name='order_items_order_price_unique'),
        sa.UniqueConstraint('order_id', 'stripe_line_item_id', name='order_items_order_line_item_unique'),
        sa.CheckConstraint('quantity >= 1', name='order_items_quantity_positive')
    )
    op.create_index('order_items_order_id_idx', 'order_items', ['order_id'])

    op.create_table('portal_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash')
    )


def downgrade():
    op.drop_table('portal_tokens')
    op.drop_index('order_items_order_id_idx', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('orders_customer_email_idx', table_name='orders')
    op.drop_index('orders_subscription_idx', table_name='orders')
    op.drop_index('orders_payment_intent_idx', table_name='orders')
    op.drop_table('orders')
