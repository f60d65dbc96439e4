"""Initial schema: accounts, franchises, catalog, orders, promotions

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01

This migration adds:
1. Users, session tokens, password reset tokens, loyalty history
2. Franchises and franchise staff
3. Categories, subcategories, products, product images, SKU sequence
4. Franchise product overrides (stock and pricing per franchise)
5. Cart items, orders and order items
6. Platform and franchise promotions
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(with_updated: bool = True, server_default: bool = True):
    kwargs = {"server_default": sa.text('(CURRENT_TIMESTAMP)')} if server_default else {}
    cols = [sa.Column('created_at', sa.DateTime(), nullable=False, **kwargs)]
    if with_updated:
        cols.append(sa.Column('updated_at', sa.DateTime(), nullable=False, **kwargs))
    return cols


def upgrade():
    # ==========================================================================
    # 1. ACCOUNTS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=True),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('loyalty_points >= 0', name='ck_users_loyalty_points_nonneg'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_email', ['email'], unique=True)
        batch_op.create_index('ix_users_role', ['role'], unique=False)
        batch_op.create_index('ix_users_franchise_id', ['franchise_id'], unique=False)
        batch_op.create_index('ix_users_deleted_at', ['deleted_at'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('token_type', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_session_tokens_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_session_tokens_token_hash', ['token_hash'], unique=True)

    op.create_table('password_reset_tokens',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('password_reset_tokens', schema=None) as batch_op:
        batch_op.create_index('ix_password_reset_tokens_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_password_reset_tokens_token_hash', ['token_hash'], unique=True)

    # ==========================================================================
    # 2. FRANCHISES
    # ==========================================================================
    op.create_table('franchises',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=128), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('post_code', sa.String(length=32), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('delivery_radius', sa.Float(), nullable=False, server_default='5.0'),
        sa.Column('delivery_fee', sa.Float(), nullable=False, server_default='4.99'),
        sa.Column('free_delivery_min', sa.Float(), nullable=False, server_default='50.0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('franchises', schema=None) as batch_op:
        batch_op.create_index('ix_franchises_slug', ['slug'], unique=True)
        batch_op.create_index('ix_franchises_owner_id', ['owner_id'], unique=False)
        batch_op.create_index('ix_franchises_is_active', ['is_active'], unique=False)
        batch_op.create_index('ix_franchises_deleted_at', ['deleted_at'], unique=False)

    op.create_table('franchise_staff',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    with op.batch_alter_table('franchise_staff', schema=None) as batch_op:
        batch_op.create_index('ix_franchise_staff_franchise_id', ['franchise_id'], unique=False)

    # ==========================================================================
    # 3. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('categories', schema=None) as batch_op:
        batch_op.create_index('ix_categories_deleted_at', ['deleted_at'], unique=False)

    op.create_table('subcategories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('subcategories', schema=None) as batch_op:
        batch_op.create_index('ix_subcategories_category_id', ['category_id'], unique=False)
        batch_op.create_index('ix_subcategories_deleted_at', ['deleted_at'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('item_name', sa.String(length=255), nullable=False),
        sa.Column('short_description', sa.Text(), nullable=True),
        sa.Column('long_description', sa.Text(), nullable=True),
        sa.Column('cost_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('retail_price', sa.Float(), nullable=False),
        sa.Column('promotion_price', sa.Float(), nullable=True),
        sa.Column('promotion_start', sa.DateTime(), nullable=True),
        sa.Column('promotion_end', sa.DateTime(), nullable=True),
        sa.Column('gross_margin', sa.Float(), nullable=False, server_default='0'),
        sa.Column('staff_discount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('tax_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('batch_number', sa.String(length=128), nullable=True),
        sa.Column('barcode', sa.String(length=128), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shelf_location', sa.String(length=128), nullable=True),
        sa.Column('weight_volume', sa.Float(), nullable=False, server_default='0'),
        sa.Column('unit_of_measure', sa.String(length=32), nullable=True),
        sa.Column('expiry_date', sa.DateTime(), nullable=True),
        sa.Column('pack_size', sa.String(length=64), nullable=True),
        sa.Column('category_id', sa.Uuid(), nullable=False),
        sa.Column('subcategory_id', sa.Uuid(), nullable=True),
        sa.Column('brand', sa.String(length=128), nullable=True),
        sa.Column('supplier', sa.String(length=128), nullable=True),
        sa.Column('country_of_origin', sa.String(length=128), nullable=True),
        sa.Column('is_gluten_free', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_vegetarian', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_vegan', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_age_restricted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('minimum_age', sa.Integer(), nullable=True),
        sa.Column('allergen_info', sa.Text(), nullable=True),
        sa.Column('storage_type', sa.String(length=64), nullable=True),
        sa.Column('is_own_brand', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('online_visible', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_nonneg'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.ForeignKeyConstraint(['subcategory_id'], ['subcategories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode'),
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index('ix_products_sku', ['sku'], unique=True)
        batch_op.create_index('ix_products_item_name', ['item_name'], unique=False)
        batch_op.create_index('ix_products_batch_number', ['batch_number'], unique=False)
        batch_op.create_index('ix_products_stock_quantity', ['stock_quantity'], unique=False)
        batch_op.create_index('ix_products_category_id', ['category_id'], unique=False)
        batch_op.create_index('ix_products_subcategory_id', ['subcategory_id'], unique=False)
        batch_op.create_index('ix_products_brand', ['brand'], unique=False)
        batch_op.create_index('ix_products_online_visible', ['online_visible'], unique=False)
        batch_op.create_index('ix_products_status', ['status'], unique=False)
        batch_op.create_index('ix_products_deleted_at', ['deleted_at'], unique=False)

    op.create_table('product_images',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('image_url', sa.String(length=1024), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('product_images', schema=None) as batch_op:
        batch_op.create_index('ix_product_images_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_product_images_image_url', ['image_url'], unique=False)
        batch_op.create_index('ix_product_images_deleted_at', ['deleted_at'], unique=False)

    op.create_table('sku_sequences',
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('next_value', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('name'),
    )

    # ==========================================================================
    # 4. FRANCHISE OVERRIDES
    # ==========================================================================
    op.create_table('franchise_products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('retail_price_override', sa.Float(), nullable=True),
        sa.Column('promotion_price_override', sa.Float(), nullable=True),
        sa.Column('promotion_start_override', sa.DateTime(), nullable=True),
        sa.Column('promotion_end_override', sa.DateTime(), nullable=True),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('shelf_location', sa.String(length=128), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_franchise_products_stock_nonneg'),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('franchise_id', 'product_id', name='uq_franchise_products_franchise_product'),
    )
    with op.batch_alter_table('franchise_products', schema=None) as batch_op:
        batch_op.create_index('ix_franchise_products_franchise_id', ['franchise_id'], unique=False)
        batch_op.create_index('ix_franchise_products_product_id', ['product_id'], unique=False)

    # ==========================================================================
    # 5. CART AND ORDERS
    # ==========================================================================
    op.create_table('cart_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('quantity >= 1', name='ck_cart_items_quantity_positive'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_id', name='uq_cart_items_user_product'),
    )
    with op.batch_alter_table('cart_items', schema=None) as batch_op:
        batch_op.create_index('ix_cart_items_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_cart_items_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_cart_items_deleted_at', ['deleted_at'], unique=False)

    op.create_table('orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=True),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('subtotal', sa.Float(), nullable=False),
        sa.Column('delivery_fee', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total', sa.Float(), nullable=False),
        sa.Column('points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_address', sa.Text(), nullable=False),
        sa.Column('payment_method', sa.String(length=64), nullable=True),
        sa.Column('customer_lat', sa.Float(), nullable=True),
        sa.Column('customer_lng', sa.Float(), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_orders_franchise_id', ['franchise_id'], unique=False)
        batch_op.create_index('ix_orders_order_number', ['order_number'], unique=True)
        batch_op.create_index('ix_orders_status', ['status'], unique=False)
        batch_op.create_index('ix_orders_created_at', ['created_at'], unique=False)
        batch_op.create_index('ix_orders_deleted_at', ['deleted_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('product_sku', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index('ix_order_items_order_id', ['order_id'], unique=False)
        batch_op.create_index('ix_order_items_product_id', ['product_id'], unique=False)
        batch_op.create_index('ix_order_items_image_url', ['image_url'], unique=False)

    op.create_table('loyalty_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('loyalty_history', schema=None) as batch_op:
        batch_op.create_index('ix_loyalty_history_user_id', ['user_id'], unique=False)
        batch_op.create_index('ix_loyalty_history_created_at', ['created_at'], unique=False)

    # ==========================================================================
    # 6. PROMOTIONS
    # ==========================================================================
    op.create_table('promotions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image', sa.String(length=1024), nullable=True),
        sa.Column('product_url', sa.String(length=1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('promotions', schema=None) as batch_op:
        batch_op.create_index('ix_promotions_is_active', ['is_active'], unique=False)
        batch_op.create_index('ix_promotions_deleted_at', ['deleted_at'], unique=False)

    op.create_table('franchise_promotions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('franchise_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image', sa.String(length=1024), nullable=True),
        sa.Column('product_url', sa.String(length=1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['franchise_id'], ['franchises.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('franchise_promotions', schema=None) as batch_op:
        batch_op.create_index('ix_franchise_promotions_franchise_id', ['franchise_id'], unique=False)
        batch_op.create_index('ix_franchise_promotions_deleted_at', ['deleted_at'], unique=False)


def downgrade():
    for table in (
        'franchise_promotions', 'promotions', 'loyalty_history', 'order_items', 'orders',
        'cart_items', 'franchise_products', 'sku_sequences', 'product_images', 'products',
        'subcategories', 'categories', 'franchise_staff', 'franchises',
        'password_reset_tokens', 'session_tokens', 'users',
    ):
        op.drop_table(table)
