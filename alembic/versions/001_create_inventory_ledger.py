"""Create inventory ledger, order fulfillment and procurement tables.

Revision ID: 001_create_inventory_ledger
Revises:
Create Date: 2026-10-19

Tables:
- warehouses, suppliers, products
- inventory_records (ledger rows) and stock_movements (append-only log)
- orders, order_items, order_allocations, order_returns
- price_lists, price_list_items, purchase_orders, purchase_order_items
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_create_inventory_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', sa.Uuid(), primary_key=True)


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """Create the ledger schema."""

    # ==================== REFERENCE DATA ====================
    op.create_table(
        'warehouses',
        _id(),
        sa.Column('code', sa.String(30), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('priority', sa.Integer, nullable=False, server_default='100',
                  comment='Allocation order, ascending'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index('ix_warehouses_code', 'warehouses', ['code'], unique=True)

    op.create_table(
        'suppliers',
        _id(),
        sa.Column('code', sa.String(30), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('lead_time_days', sa.Integer, nullable=True,
                  comment='Days between placing an order and receiving goods'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('extra_data', sa.JSON, nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_suppliers_code', 'suppliers', ['code'], unique=True)

    op.create_table(
        'products',
        _id(),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column('supplier_id', sa.Uuid(), sa.ForeignKey('suppliers.id', ondelete='SET NULL'), nullable=True),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_supplier_id', 'products', ['supplier_id'])

    # ==================== LEDGER ====================
    op.create_table(
        'inventory_records',
        _id(),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('location_code', sa.String(50), nullable=False, server_default=''),
        sa.Column('quantity_on_hand', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_available', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_reserved', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_in_transit', sa.Integer, nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Integer, nullable=False, server_default='0'),
        sa.Column('reorder_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Integer, nullable=False, server_default='0'),
        sa.Column('max_stock_level', sa.Integer, nullable=True),
        sa.Column('average_cost', sa.Float, nullable=False, server_default='0'),
        sa.Column('last_movement_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('movement_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        _created_at(),
        sa.UniqueConstraint('product_id', 'warehouse_id', 'location_code', name='uq_inventory_record'),
        sa.CheckConstraint('quantity_on_hand >= 0', name='ck_inventory_on_hand_non_negative'),
        sa.CheckConstraint('quantity_available >= 0', name='ck_inventory_available_non_negative'),
        sa.CheckConstraint('quantity_reserved >= 0', name='ck_inventory_reserved_non_negative'),
    )
    op.create_index('ix_inventory_records_product_id', 'inventory_records', ['product_id'])
    op.create_index('ix_inventory_records_warehouse_id', 'inventory_records', ['warehouse_id'])

    op.create_table(
        'stock_movements',
        _id(),
        sa.Column('movement_number', sa.String(50), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('inventory_id', sa.Uuid(), sa.ForeignKey('inventory_records.id'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('movement_type', sa.String(30), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_cost', sa.Float, nullable=True),
        sa.Column('total_cost', sa.Float, nullable=True),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('reference_id', sa.Uuid(), nullable=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('quantity_after', sa.Integer, nullable=False),
        sa.Column('available_after', sa.Integer, nullable=False),
        sa.Column('reserved_after', sa.Integer, nullable=False),
        sa.Column('performed_by', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        _created_at(),
        sa.UniqueConstraint('inventory_id', 'sequence', name='uq_stock_movement_sequence'),
    )
    op.create_index('ix_stock_movements_movement_number', 'stock_movements', ['movement_number'], unique=True)
    op.create_index('ix_stock_movements_inventory_id', 'stock_movements', ['inventory_id'])
    op.create_index('ix_stock_movements_warehouse_id', 'stock_movements', ['warehouse_id'])
    op.create_index('ix_stock_movements_reference_id', 'stock_movements', ['reference_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index(
        'ix_stock_movements_product_type_created',
        'stock_movements',
        ['product_id', 'movement_type', 'created_at'],
    )

    # ==================== ORDERS ====================
    op.create_table(
        'orders',
        _id(),
        sa.Column('order_number', sa.String(60), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=True),
        sa.Column('warehouse_id', sa.Uuid(), sa.ForeignKey('warehouses.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('backorder_of_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_backorder', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('expected_date', sa.Date, nullable=True),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('tracking_number', sa.String(100), nullable=True),
        sa.Column('carrier', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_backorder_of_id', 'orders', ['backorder_of_id'])

    op.create_table(
        'order_items',
        _id(),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('product_name', sa.String(300), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('quantity_allocated', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_shipped', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_returned', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_backordered', sa.Integer, nullable=False, server_default='0'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_allocations',
        _id(),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_item_id', sa.Uuid(), sa.ForeignKey('order_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('inventory_id', sa.Uuid(), sa.ForeignKey('inventory_records.id'), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('quantity_shipped', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_released', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', sa.String(30), nullable=False, server_default='reserved'),
        _created_at(),
    )
    op.create_index('ix_order_allocations_order_id', 'order_allocations', ['order_id'])
    op.create_index('ix_order_allocations_order_item_id', 'order_allocations', ['order_item_id'])
    op.create_index('ix_order_allocations_inventory_id', 'order_allocations', ['inventory_id'])

    op.create_table(
        'order_returns',
        _id(),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('order_item_id', sa.Uuid(), sa.ForeignKey('order_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('inventory_id', sa.Uuid(), sa.ForeignKey('inventory_records.id'), nullable=True),
        sa.Column('movement_id', sa.Uuid(), sa.ForeignKey('stock_movements.id'), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('condition', sa.String(30), nullable=False),
        sa.Column('restocked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('reason', sa.Text, nullable=True),
        _created_at(),
    )
    op.create_index('ix_order_returns_order_id', 'order_returns', ['order_id'])

    # ==================== PROCUREMENT ====================
    op.create_table(
        'price_lists',
        _id(),
        sa.Column('supplier_id', sa.Uuid(), sa.ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('effective_date', sa.Date, nullable=False),
        sa.Column('expiry_date', sa.Date, nullable=True),
        _created_at(),
    )
    op.create_index('ix_price_lists_supplier_id', 'price_lists', ['supplier_id'])

    op.create_table(
        'price_list_items',
        _id(),
        sa.Column('price_list_id', sa.Uuid(), sa.ForeignKey('price_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('minimum_quantity', sa.Integer, nullable=False, server_default='1'),
        sa.UniqueConstraint('price_list_id', 'sku', name='uq_price_list_item_sku'),
    )
    op.create_index('ix_price_list_items_price_list_id', 'price_list_items', ['price_list_id'])

    op.create_table(
        'purchase_orders',
        _id(),
        sa.Column('po_number', sa.String(80), nullable=False),
        sa.Column('supplier_id', sa.Uuid(), sa.ForeignKey('suppliers.id'), nullable=False),
        sa.Column('price_list_id', sa.Uuid(), sa.ForeignKey('price_lists.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='DRAFT'),
        sa.Column('approval_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_automated', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('internal_notes', sa.Text, nullable=True),
        sa.Column('order_date', sa.Date, nullable=False),
        sa.Column('expected_delivery_date', sa.Date, nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('approved_by', sa.String(100), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_to_vendor_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('vendor_acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index('ix_purchase_orders_po_number', 'purchase_orders', ['po_number'], unique=True)
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_items',
        _id(),
        sa.Column('purchase_order_id', sa.Uuid(), sa.ForeignKey('purchase_orders.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('inventory_id', sa.Uuid(), sa.ForeignKey('inventory_records.id'), nullable=True),
        sa.Column('price_list_item_id', sa.Uuid(), sa.ForeignKey('price_list_items.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('sku', sa.String(100), nullable=False),
        sa.Column('product_name', sa.String(300), nullable=False),
        sa.Column('quantity_ordered', sa.Integer, nullable=False),
        sa.Column('quantity_received', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
    )
    op.create_index('ix_purchase_order_items_purchase_order_id', 'purchase_order_items', ['purchase_order_id'])

    print("Created inventory ledger schema")


def downgrade() -> None:
    """Drop the ledger schema."""
    for table in [
        'purchase_order_items',
        'purchase_orders',
        'price_list_items',
        'price_lists',
        'order_returns',
        'order_allocations',
        'order_items',
        'orders',
        'stock_movements',
        'inventory_records',
        'products',
        'suppliers',
        'warehouses',
    ]:
        op.drop_table(table)
