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
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('subtotal', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('shipping_cost', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('grand_total', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.Integer, nullable=False, server_default='0'),
        sa.Column('payment_status', sa.Integer, nullable=False, server_default='0'),
        sa.Column('order_status', sa.Integer, nullable=False, server_default='0'),
        sa.Column('shipping_address', sa.Text, nullable=False),
        sa.Column('district', sa.String(100), nullable=True),
        sa.Column('khoroo', sa.String(100), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('invoice_data', sa.Text, nullable=True),
        sa.Column('invoice_id', sa.String(100), nullable=True),
        sa.Column('qr_image', sa.Text, nullable=True),
        sa.Column('qr_text', sa.Text, nullable=True),
        sa.Column('processing_started_at', sa.DateTime, nullable=True),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_invoice_id', 'orders', ['invoice_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=False, server_default=''),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('name_mn', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(12,2), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
        sa.Column('image', sa.Text, nullable=True),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'coupons',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('code', sa.String(32), nullable=False),
        sa.Column('discount_percentage', sa.Numeric(5,2), nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_manual', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_coupons_code', 'coupons', ['code'], unique=True)
    op.create_index('ix_coupons_expires_at', 'coupons', ['expires_at'])
    op.create_index('ix_coupons_is_active', 'coupons', ['is_active'])

    op.create_table(
        'coupon_usage',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('coupon_id', sa.Integer, sa.ForeignKey('coupons.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('discount_amount', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('used_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_coupon_usage_coupon_id', 'coupon_usage', ['coupon_id'])
    op.create_index('ix_coupon_usage_user_id', 'coupon_usage', ['user_id'])
    op.create_index('ix_coupon_usage_order_id', 'coupon_usage', ['order_id'])

    op.create_table(
        'addresses',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('district', sa.String(100), nullable=True),
        sa.Column('khoroo', sa.String(100), nullable=True),
        sa.Column('address', sa.Text, nullable=False),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])

    op.create_table(
        'bank_accounts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('bank_name', sa.String(100), nullable=False),
        sa.Column('account_number', sa.String(50), nullable=False),
        sa.Column('account_name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('display_order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('color_scheme', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'banners',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('text', sa.String(255), nullable=True),
        sa.Column('link', sa.String(255), nullable=True),
        sa.Column('image', sa.String(500), nullable=False),
        sa.Column('order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'partners',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('logo', sa.String(500), nullable=False),
        sa.Column('website_url', sa.String(500), nullable=True),
        sa.Column('order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'footers',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('logo_url', sa.String(500), nullable=True),
        sa.Column('company_name', sa.String(200), nullable=False),
        sa.Column('company_suffix', sa.String(50), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('social_links', sa.JSON, nullable=False),
        sa.Column('quick_links', sa.JSON, nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('copyright_text', sa.String(255), nullable=True),
        sa.Column('footer_links', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )
    op.create_table(
        'gift_settings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('threshold_type', sa.String(10), nullable=False, server_default='amount'),
        sa.Column('threshold_value', sa.Numeric(12,2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False)
    )

def downgrade():
    op.drop_table('gift_settings')
    op.drop_table('footers')
    op.drop_table('partners')
    op.drop_table('banners')
    op.drop_table('bank_accounts')
    op.drop_table('addresses')
    op.drop_table('coupon_usage')
    op.drop_table('coupons')
    op.drop_table('order_items')
    op.drop_table('orders')
