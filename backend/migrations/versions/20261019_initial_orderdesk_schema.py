"""initial orderdesk schema

Revision ID: od0001initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the checkout and payment reconciliation schema:
- products / discounts / discount_usages: catalog and pricing
- settings: runtime-editable tax and store hours
- queue_counters: one row per store-local day
- orders / order_lines: checkout aggregate with line snapshots
- payment_events: append-only gateway signal ledger
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'od0001initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: Menu items with a locked stock counter
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closed', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # discounts: Percentage discounts, automatic or by code
    # ============================================================================
    op.create_table(
        'discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('min_purchase_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('requires_code', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_from', sa.Time(), nullable=True),
        sa.Column('time_until', sa.Time(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_discounts_is_active', 'discounts', ['is_active'])

    # ============================================================================
    # settings: Typed key/value store
    # ============================================================================
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('value_type', sa.String(length=16), nullable=False, server_default='string'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_settings_key'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # queue_counters: Daily queue number sequence
    # ============================================================================
    op.create_table(
        'queue_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('queue_date', sa.Date(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('queue_date', name='uq_queue_counters_date'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # orders: Checkout aggregate
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_code', sa.String(length=16), nullable=False),
        sa.Column('queue_date', sa.Date(), nullable=False),
        sa.Column('queue_number', sa.Integer(), nullable=False),
        sa.Column('queue_display', sa.String(length=16), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_id', sa.Integer(), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('gateway_reference', sa.String(length=64), nullable=True),
        sa.Column('gateway_raw_status', sa.String(length=32), nullable=True),
        sa.Column('gateway_fraud_status', sa.String(length=32), nullable=True),
        sa.Column('gateway_payment_type', sa.String(length=64), nullable=True),
        sa.Column('gateway_token', sa.String(length=255), nullable=True),
        sa.Column('gateway_redirect_url', sa.String(length=512), nullable=True),
        sa.Column('payment_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('amount_received_cents', sa.Integer(), nullable=True),
        sa.Column('change_cents', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('confirmation_notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('order_hash', sa.String(length=64), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('review_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['discount_id'], ['discounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_code', name='uq_orders_order_code'),
        sa.UniqueConstraint('queue_date', 'queue_number', name='uq_orders_queue_date_number'),
        sa.UniqueConstraint('gateway_reference', name='uq_orders_gateway_reference'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_customer_email', ['customer_email'])
        batch_op.create_index('ix_orders_payment_status', ['payment_status'])
        batch_op.create_index('ix_orders_status', ['status'])
        batch_op.create_index('ix_orders_idempotency_key', ['idempotency_key'])
        batch_op.create_index('ix_orders_needs_review', ['needs_review'])
        batch_op.create_index('ix_orders_customer_hash_created', ['customer_email', 'order_hash', 'created_at'])
        batch_op.create_index('ix_orders_customer_attempt', ['customer_email', 'last_attempt_at'])
        batch_op.create_index('ix_orders_expiry_scan', ['payment_method', 'payment_status', 'created_at'])

    # ============================================================================
    # order_lines: Price and name snapshots per product
    # ============================================================================
    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])

    # ============================================================================
    # discount_usages: Single-use tracking per customer and device
    # ============================================================================
    op.create_table(
        'discount_usages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('discount_id', sa.Integer(), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['discount_id'], ['discounts.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_discount_usages_order_id', 'discount_usages', ['order_id'])
    op.create_index('ix_discount_usages_discount_customer', 'discount_usages', ['discount_id', 'customer_email'])
    op.create_index('ix_discount_usages_discount_device', 'discount_usages', ['discount_id', 'device_id'])

    # ============================================================================
    # payment_events: Append-only reconciliation ledger
    # ============================================================================
    op.create_table(
        'payment_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('raw_status', sa.String(length=32), nullable=True),
        sa.Column('fraud_status', sa.String(length=32), nullable=True),
        sa.Column('payment_type', sa.String(length=64), nullable=True),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('payment_status_before', sa.String(length=16), nullable=False),
        sa.Column('payment_status_after', sa.String(length=16), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_events_occurred_at', 'payment_events', ['occurred_at'])
    op.create_index('ix_payment_events_order_occurred', 'payment_events', ['order_id', 'occurred_at'])


def downgrade():
    op.drop_index('ix_payment_events_order_occurred', table_name='payment_events')
    op.drop_index('ix_payment_events_occurred_at', table_name='payment_events')
    op.drop_table('payment_events')

    op.drop_index('ix_discount_usages_discount_device', table_name='discount_usages')
    op.drop_index('ix_discount_usages_discount_customer', table_name='discount_usages')
    op.drop_index('ix_discount_usages_order_id', table_name='discount_usages')
    op.drop_table('discount_usages')

    op.drop_index('ix_order_lines_order_id', table_name='order_lines')
    op.drop_table('order_lines')

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index('ix_orders_expiry_scan')
        batch_op.drop_index('ix_orders_customer_attempt')
        batch_op.drop_index('ix_orders_customer_hash_created')
        batch_op.drop_index('ix_orders_needs_review')
        batch_op.drop_index('ix_orders_idempotency_key')
        batch_op.drop_index('ix_orders_status')
        batch_op.drop_index('ix_orders_payment_status')
        batch_op.drop_index('ix_orders_customer_email')
    op.drop_table('orders')

    op.drop_table('queue_counters')
    op.drop_table('settings')
    op.drop_index('ix_discounts_is_active', table_name='discounts')
    op.drop_table('discounts')
    op.drop_index('ix_products_name', table_name='products')
    op.drop_table('products')
