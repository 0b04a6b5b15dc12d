"""Create inventory ledger schema

Revision ID: 001_inventory_ledger
Revises:
Create Date: 2026-10-19

Tables:
- inventory_units, inventory_unit_conversions
- inventory_items (branch-owned, no on-hand column)
- stock_counts, stock_count_lines
- inventory_movements (append-only ledger)
- inventory_variance_tags
- audit_logs
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001_inventory_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all ledger tables."""

    # ==================== units ====================
    op.create_table(
        'inventory_units',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(50), nullable=False, unique=True),
        sa.Column('symbol', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'inventory_unit_conversions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('from_unit_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_units.id'), nullable=False),
        sa.Column('to_unit_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_units.id'), nullable=False),
        sa.Column('multiplier', sa.Numeric(18, 6), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('from_unit_id', 'to_unit_id', name='uq_unit_conversion'),
        sa.CheckConstraint('multiplier > 0', name='ck_unit_conversion_multiplier_positive'),
    )

    # ==================== items ====================
    op.create_table(
        'inventory_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100)),
        sa.Column('base_unit_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_units.id')),
        sa.Column('min_level', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('reorder_point', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('branch_id', 'name', name='uq_inventory_item_branch_name'),
        sa.CheckConstraint('min_level >= 0', name='ck_inventory_item_min_level'),
        sa.CheckConstraint('reorder_point >= 0', name='ck_inventory_item_reorder_point'),
    )
    op.create_index('ix_inventory_items_branch_id', 'inventory_items', ['branch_id'])
    op.create_index('ix_inventory_items_is_active', 'inventory_items', ['is_active'])

    # ==================== stock counts ====================
    op.create_table(
        'stock_counts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('count_number', sa.String(50), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT',
                  comment='DRAFT, SUBMITTED, APPROVED, CANCELLED'),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True)),
        sa.Column('approved_by', postgresql.UUID(as_uuid=True)),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_reason', sa.Text()),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'APPROVED', 'CANCELLED')",
            name='ck_stock_count_status',
        ),
    )
    op.create_index('ix_stock_counts_count_number', 'stock_counts', ['count_number'], unique=True)
    op.create_index('ix_stock_counts_branch_id', 'stock_counts', ['branch_id'])
    op.create_index('ix_stock_counts_status', 'stock_counts', ['status'])

    op.create_table(
        'stock_count_lines',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('stock_count_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('stock_counts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_quantity', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('actual_quantity', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('stock_count_id', 'item_id', name='uq_stock_count_line_item'),
    )
    op.create_index('ix_stock_count_lines_stock_count_id', 'stock_count_lines', ['stock_count_id'])

    # ==================== ledger ====================
    op.create_table(
        'inventory_movements',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('movement_type', sa.String(50), nullable=False,
                  comment='PURCHASE_RECEIPT, ADJUSTMENT_IN, ADJUSTMENT_OUT, WASTE, TRANSFER_OUT, '
                          'TRANSFER_IN, INITIAL_STOCK, STOCK_COUNT_ADJUSTMENT'),
        sa.Column('quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('entered_quantity', sa.Numeric(18, 4)),
        sa.Column('entered_unit_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_units.id')),
        sa.Column('unit_cost', sa.Numeric(14, 4)),
        sa.Column('reference_type', sa.String(50)),
        sa.Column('reference_id', postgresql.UUID(as_uuid=True)),
        sa.Column('reference_number', sa.String(100)),
        sa.Column('stock_count_line_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('stock_count_lines.id')),
        sa.Column('notes', sa.Text()),
        sa.Column('created_by', postgresql.UUID(as_uuid=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity <> 0', name='ck_inventory_movement_nonzero'),
    )
    op.create_index('ix_inventory_movements_item_branch', 'inventory_movements', ['item_id', 'branch_id'])
    op.create_index('ix_inventory_movements_branch_id', 'inventory_movements', ['branch_id'])
    op.create_index('ix_inventory_movements_movement_type', 'inventory_movements', ['movement_type'])
    op.create_index('ix_inventory_movements_reference_id', 'inventory_movements', ['reference_id'])
    op.create_index('ix_inventory_movements_created_at', 'inventory_movements', ['created_at'])

    # ==================== variance tags ====================
    op.create_table(
        'inventory_variance_tags',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('branch_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('root_cause', sa.String(30), nullable=False,
                  comment='WASTE, THEFT, OVER_PORTIONING, DATA_ERROR, SUPPLIER_VARIANCE, UNKNOWN'),
        sa.Column('notes', sa.Text()),
        sa.Column('variance_qty', sa.Numeric(18, 4)),
        sa.Column('tagged_by', postgresql.UUID(as_uuid=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('item_id', 'branch_id', 'period_start', 'period_end',
                            name='uq_variance_tag_item_period'),
    )
    op.create_index('ix_inventory_variance_tags_item_id', 'inventory_variance_tags', ['item_id'])
    op.create_index('ix_inventory_variance_tags_branch_id', 'inventory_variance_tags', ['branch_id'])

    # ==================== audit ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True)),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True)),
        sa.Column('old_values', sa.JSON()),
        sa.Column('new_values', sa.JSON()),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    """Drop all ledger tables."""
    op.drop_table('audit_logs')
    op.drop_table('inventory_variance_tags')
    op.drop_table('inventory_movements')
    op.drop_table('stock_count_lines')
    op.drop_table('stock_counts')
    op.drop_table('inventory_items')
    op.drop_table('inventory_unit_conversions')
    op.drop_table('inventory_units')
