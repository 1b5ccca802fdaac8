"""initial cylinder ledger schema

Revision ID: cl001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the cylinder inventory ledger schema:
- read models owned by other domains: cylinder_types, customers, vehicles,
  delivery_transactions, delivery_transaction_lines
- inventory_positions / movement_records: quantity state and its append-only log
- goods_receipts / inventory_outbox_tasks / document_sequences: GR lifecycle
- exchange_tracking_records, daily_reconciliations, variance_details,
  vehicle_end_of_day_inventory: exchange tracking and reconciliation
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'cl001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # Read models (master data and delivery transactions)
    # ============================================================================
    op.create_table(
        'cylinder_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=100), nullable=False),
        sa.Column('capacity', sa.String(length=32), nullable=True),
        sa.Column('unit_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'vehicles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('vehicle_number', sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'delivery_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('vehicle_id', sa.Integer(), nullable=True),
        sa.Column('delivery_datetime', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_bill_amount_cents', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_delivery_transactions_customer_id', 'delivery_transactions', ['customer_id'])
    op.create_index('ix_delivery_transactions_vehicle_id', 'delivery_transactions', ['vehicle_id'])

    op.create_table(
        'delivery_transaction_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('delivery_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=False),
        sa.Column('delivered_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rate_applied_cents', sa.Integer(), nullable=True),
        sa.Column('line_amount_cents', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['delivery_id'], ['delivery_transactions.id'], ),
        sa.ForeignKeyConstraint(['cylinder_type_id'], ['cylinder_types.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_delivery_transaction_lines_delivery_id', 'delivery_transaction_lines', ['delivery_id'])

    # ============================================================================
    # inventory_positions: one row per (type, location kind, reference, status)
    # ============================================================================
    op.create_table(
        'inventory_positions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('position_key', sa.String(length=96), nullable=False),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=False),
        sa.Column('location_kind', sa.String(length=16), nullable=False),
        sa.Column('location_reference_id', sa.Integer(), nullable=True),
        sa.Column('cylinder_status', sa.String(length=8), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_updated_by', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['cylinder_type_id'], ['cylinder_types.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('position_key', name='uq_inventory_positions_key'),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_positions_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_positions_location', 'inventory_positions',
                    ['location_kind', 'location_reference_id'])
    op.create_index('ix_inventory_positions_type_status', 'inventory_positions',
                    ['cylinder_type_id', 'cylinder_status'])

    # ============================================================================
    # movement_records: append-only movement log
    # ============================================================================
    op.create_table(
        'movement_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('from_location_kind', sa.String(length=16), nullable=True),
        sa.Column('from_location_reference_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(length=8), nullable=True),
        sa.Column('to_location_kind', sa.String(length=16), nullable=False),
        sa.Column('to_location_reference_id', sa.Integer(), nullable=True),
        sa.Column('to_status', sa.String(length=8), nullable=False),
        sa.Column('reference_transaction_id', sa.Integer(), nullable=True),
        sa.Column('moved_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cylinder_type_id'], ['cylinder_types.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_movement_records_idempotency_key'),
        sa.CheckConstraint('quantity > 0', name='ck_movement_records_positive_quantity'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_movement_records_movement_type', 'movement_records', ['movement_type'])
    op.create_index('ix_movement_records_type_created', 'movement_records', ['cylinder_type_id', 'created_at'])
    op.create_index('ix_movement_records_reference', 'movement_records', ['reference_transaction_id'])

    # ============================================================================
    # goods_receipts: PENDING -> APPROVED -> FINALIZED
    # ============================================================================
    op.create_table(
        'goods_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('delivery_transaction_id', sa.Integer(), nullable=False),
        sa.Column('gr_number', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('advance_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('finalized_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['delivery_transaction_id'], ['delivery_transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('delivery_transaction_id', name='uq_goods_receipts_delivery'),
        sa.UniqueConstraint('gr_number', name='uq_goods_receipts_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_goods_receipts_delivery_transaction_id', 'goods_receipts', ['delivery_transaction_id'])
    op.create_index('ix_goods_receipts_status', 'goods_receipts', ['status'])

    # ============================================================================
    # inventory_outbox_tasks: durable GR side effects with retry/backoff
    # ============================================================================
    op.create_table(
        'inventory_outbox_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('goods_receipt_id', sa.Integer(), nullable=False),
        sa.Column('delivery_transaction_id', sa.Integer(), nullable=False),
        sa.Column('task_type', sa.String(length=16), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('from_location_kind', sa.String(length=16), nullable=True),
        sa.Column('from_location_reference_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(length=8), nullable=True),
        sa.Column('to_location_kind', sa.String(length=16), nullable=False),
        sa.Column('to_location_reference_id', sa.Integer(), nullable=True),
        sa.Column('to_status', sa.String(length=8), nullable=False),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=160), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('movement_record_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['goods_receipt_id'], ['goods_receipts.id'], ),
        sa.ForeignKeyConstraint(['movement_record_id'], ['movement_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_inventory_outbox_idempotency_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_outbox_tasks_goods_receipt_id', 'inventory_outbox_tasks', ['goods_receipt_id'])
    op.create_index('ix_inventory_outbox_due', 'inventory_outbox_tasks', ['status', 'next_attempt_at'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=16), nullable=False),
        sa.Column('sequence_date', sa.String(length=8), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'sequence_date', name='uq_doc_sequences_type_date'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Exchange tracking and reconciliation
    # ============================================================================
    op.create_table(
        'exchange_tracking_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=True),
        sa.Column('delivery_transaction_id', sa.Integer(), nullable=True),
        sa.Column('filled_delivered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('empty_collected', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_empty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damaged_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variance_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variance_type', sa.String(length=16), nullable=False),
        sa.Column('variance_reason', sa.String(length=32), nullable=True),
        sa.Column('customer_acknowledged', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('acknowledged_by', sa.Integer(), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_exchange_tracking_plan', 'exchange_tracking_records', ['plan_id'])
    op.create_index('ix_exchange_tracking_order', 'exchange_tracking_records', ['order_id'])
    op.create_index('ix_exchange_tracking_records_customer_id', 'exchange_tracking_records', ['customer_id'])

    op.create_table(
        'daily_reconciliations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_date', sa.Date(), nullable=False),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_exchanges', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_shortages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_excess', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_damage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shortage_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('excess_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('damage_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_variance_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('reconciled_by', sa.Integer(), nullable=False),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status_updated_by', sa.Integer(), nullable=True),
        sa.Column('reconciliation_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'reconciliation_date', name='uq_daily_reconciliations_plan_date'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_daily_reconciliations_plan_id', 'daily_reconciliations', ['plan_id'])
    op.create_index('ix_daily_reconciliations_status', 'daily_reconciliations', ['status'])

    op.create_table(
        'variance_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reconciliation_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=True),
        sa.Column('variance_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variance_reason', sa.String(length=64), nullable=True),
        sa.Column('resolution_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['reconciliation_id'], ['daily_reconciliations.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_variance_details_reconciliation_id', 'variance_details', ['reconciliation_id'])

    op.create_table(
        'vehicle_end_of_day_inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_type_id', sa.Integer(), nullable=False),
        sa.Column('expected_remaining', sa.Integer(), nullable=False),
        sa.Column('actual_remaining', sa.Integer(), nullable=False),
        sa.Column('variance', sa.Integer(), nullable=False),
        sa.Column('variance_reason', sa.String(length=64), nullable=True),
        sa.Column('counted_by', sa.Integer(), nullable=True),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'cylinder_type_id', name='uq_vehicle_eod_plan_type'),
    )
    op.create_index('ix_vehicle_end_of_day_inventory_plan_id', 'vehicle_end_of_day_inventory', ['plan_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('vehicle_end_of_day_inventory')
    op.drop_table('variance_details')
    op.drop_table('daily_reconciliations')
    op.drop_table('exchange_tracking_records')
    op.drop_table('document_sequences')
    op.drop_table('inventory_outbox_tasks')
    op.drop_table('goods_receipts')
    op.drop_table('movement_records')
    op.drop_table('inventory_positions')
    op.drop_table('delivery_transaction_lines')
    op.drop_table('delivery_transactions')
    op.drop_table('vehicles')
    op.drop_table('customers')
    op.drop_table('cylinder_types')
