"""create checkout schema

Revision ID: 3a7c19e2b4d1
Revises:
Create Date: 2026-10-19 10:12:41.218334

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3a7c19e2b4d1'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(128), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('role', sa.String(16), nullable=False),
        sa.Column('is_guest', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('ix_users_public_id', 'users', ['public_id'], unique=True)

    op.create_table(
        'address',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('title', sa.String(64), nullable=True),
        sa.Column('first_name', sa.String(128), nullable=False),
        sa.Column('last_name', sa.String(128), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('city', sa.String(128), nullable=False),
        sa.Column('district', sa.String(128), nullable=True),
        sa.Column('postal_code', sa.String(16), nullable=True),
        sa.Column('address_line1', sa.Text(), nullable=False),
        sa.Column('address_line2', sa.Text(), nullable=True),
        sa.Column('country', sa.String(64), nullable=False, server_default='Türkiye'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_address_user_id', 'address', ['user_id'])

    op.create_table(
        'product',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=True, unique=True),
        sa.Column('thumbnail', sa.String(1024), nullable=True),
        sa.Column('category', sa.String(128), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),
    )
    op.create_index('ix_product_public_id', 'product', ['public_id'], unique=True)

    op.create_table(
        'productvariant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.String(64), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('value', sa.String(128), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('stock >= 0', name='ck_productvariant_stock_non_negative'),
    )
    op.create_index('ix_productvariant_public_id', 'productvariant', ['public_id'], unique=True)
    op.create_index('ix_productvariant_product_id', 'productvariant', ['product_id'])

    op.create_table(
        'coupon',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(64), nullable=False),
        sa.Column('discount_type', sa.String(16), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_discount', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_coupon_code', 'coupon', ['code'], unique=True)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(32), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('payment_status', sa.String(16), nullable=False),
        sa.Column('payment_method', sa.String(32), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False, server_default='TRY'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('coupon_id', sa.Integer(), sa.ForeignKey('coupon.id', ondelete='SET NULL'), nullable=True),
        sa.Column('coupon_code', sa.String(64), nullable=True),
        sa.Column('billing_address_id', sa.Integer(), sa.ForeignKey('address.id', ondelete='SET NULL'), nullable=True),
        sa.Column('shipping_address_id', sa.Integer(), sa.ForeignKey('address.id', ondelete='SET NULL'), nullable=True),
        sa.Column('customer_note', sa.Text(), nullable=True),
        sa.Column('contract_access_token', sa.String(64), nullable=False),
        sa.Column('status_history', JSONType, nullable=False),
        sa.Column('stock_shortfall', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('iyzico_payment_id', sa.String(64), nullable=True),
        sa.Column('iyzico_conversation_id', sa.String(64), nullable=True),
        sa.Column('iyzico_payment_transactions', JSONType, nullable=True),
        sa.Column('tracking_number', sa.String(64), nullable=True),
        sa.Column('carrier_name', sa.String(64), nullable=True),
        sa.Column('invoice_url', sa.String(1024), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('preparing_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('contract_access_token', name='uq_orders_contract_access_token'),
    )
    op.create_index('ix_orders_public_id', 'orders', ['public_id'], unique=True)
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_stock_shortfall', 'orders', ['stock_shortfall'])
    op.create_index('ix_orders_iyzico_payment_id', 'orders', ['iyzico_payment_id'])

    op.create_table(
        'orderitem',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('product.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('productvariant.id', ondelete='SET NULL'), nullable=True),
        sa.Column('bundle_id', sa.String(64), nullable=True),
        sa.Column('variant_info', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_orderitem_order_id', 'orderitem', ['order_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('orderitem')
    op.drop_table('orders')
    op.drop_table('coupon')
    op.drop_table('productvariant')
    op.drop_table('product')
    op.drop_table('address')
    op.drop_table('users')
