from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('customer_id', sa.String(128), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=True),
        sa.Column('notes', sa.Text, nullable=False, server_default=''),
        sa.Column('status', sa.String(30), nullable=False, server_default='new'),
        sa.Column('subtotal_before_discount', sa.Numeric(10,2), nullable=False),
        sa.Column('discount_type', sa.String(20), nullable=True),
        sa.Column('discount_percentage', sa.Numeric(5,2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10,2), nullable=False, server_default='0'),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('coupon_id', sa.Integer, nullable=True),
        sa.Column('subtotal', sa.Numeric(10,2), nullable=False),
        sa.Column('delivery_cost', sa.Numeric(10,2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(10,2), nullable=False),
        sa.Column('total', sa.Numeric(10,2), nullable=False),
        sa.Column('total_weight', sa.Numeric(10,3), nullable=False, server_default='0'),
        sa.Column('transaction_id', sa.String(100), nullable=True),
        sa.Column('delivery_type', sa.String(20), nullable=False, server_default='delivery'),
        sa.Column('delivery_zone', sa.String(30), nullable=True),
        sa.Column('payment_method', sa.String(30), nullable=True),
        sa.Column('extra_metadata', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.Column('archived_at', sa.DateTime, nullable=True),
        sa.Column('archived_by', sa.String(128), nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(128), nullable=False, server_default=''),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('image', sa.String(500), nullable=False, server_default=''),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('weight', sa.Numeric(10,3), nullable=False, server_default='0'),
        sa.Column('selected_size', sa.String(50), nullable=True),
        sa.Column('selected_color', sa.String(50), nullable=True),
    )

    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('percentage', sa.Numeric(5,2), nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=True),
        sa.Column('user_id', sa.String(128), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('max_uses', sa.Integer, nullable=True),
        sa.Column('used_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_used_by', sa.String(128), nullable=True),
        sa.Column('last_used_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)

    op.create_table(
        'failed_orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('transaction_id', sa.String(100), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('user_email', sa.String(255), nullable=True),
        sa.Column('user_name', sa.String(200), nullable=True),
        sa.Column('amount', sa.Numeric(10,2), nullable=False),
        sa.Column('order_data', sa.JSON, nullable=False),
        sa.Column('error', sa.Text, nullable=True),
        sa.Column('error_details', sa.JSON, nullable=True),
        sa.Column('comment', sa.Text, nullable=False, server_default=''),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('flagged_for_review', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('ix_failed_orders_transaction_id', 'failed_orders', ['transaction_id'], unique=True)
    op.create_index('ix_failed_orders_user_id', 'failed_orders', ['user_id'])
    op.create_index('ix_failed_orders_created_at', 'failed_orders', ['created_at'])

def downgrade():
    op.drop_table('failed_orders')
    op.drop_table('coupons')
    op.drop_table('order_items')
    op.drop_table('orders')
