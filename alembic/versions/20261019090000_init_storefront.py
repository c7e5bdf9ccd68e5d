from alembic import op
import sqlalchemy as sa

revision = "20261019090000"
down_revision = None

NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_order_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('max_discount', sa.Numeric(12, 2), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('per_user_limit', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('valid_from', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('valid_until', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('coupon_id', sa.Integer(), sa.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('used_count', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('coupon_id', 'user_id', name='uq_coupon_redemptions_coupon_user'),
    )
    op.create_index('ix_coupon_redemptions_coupon_id', 'coupon_redemptions', ['coupon_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=40), nullable=False, unique=True),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=False),
        sa.Column('address_line1', sa.String(length=255), nullable=False),
        sa.Column('address_line2', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('city', sa.String(length=120), nullable=False),
        sa.Column('state', sa.String(length=120), nullable=False),
        sa.Column('pincode', sa.String(length=32), nullable=False),
        sa.Column('country', sa.String(length=64), nullable=False, server_default='India'),
        sa.Column('coupon_code', sa.String(length=64), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('order_status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('tracking_number', sa.String(length=64), nullable=True),
        sa.Column('delivery_estimate', sa.String(length=32), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=NOW),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_coupon_code', 'orders', ['coupon_code'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=True),
        sa.Column('weight', sa.String(length=32), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('name_snapshot', sa.String(length=255), nullable=False),
        sa.Column('price_snapshot', sa.Numeric(12, 2), nullable=False),
        sa.Column('image_snapshot', sa.String(length=1024), nullable=True),
    )

def downgrade():
    op.drop_table('order_items')
    op.drop_index('ix_orders_coupon_code', table_name='orders')
    op.drop_index('ix_orders_customer_email', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_coupon_redemptions_coupon_id', table_name='coupon_redemptions')
    op.drop_table('coupon_redemptions')
    op.drop_index('ix_coupons_code', table_name='coupons')
    op.drop_table('coupons')
