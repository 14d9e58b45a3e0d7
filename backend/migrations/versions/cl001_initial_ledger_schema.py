"""initial ledger schema

Revision ID: cl001_initial_ledger
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the driver receivables ledger schema:
- organizations, drivers, cylinder_sizes, products: tenant master data
- inventory_transactions: append-only full-cylinder movements
- inventory_records: per-size empty-cylinder receivables by day
- settlements, sale_records: immutable settlement rows
- receivable_records: one ledger snapshot per (org, driver, date)
- customer_receivables: per-customer open items
- driver_cylinder_size_baselines: immutable onboarding anchors
- recompute_tasks: durable ledger recompute queue
- audit_events: append-only audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'cl001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # Tenant master data
    # ============================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('onboarding_completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    op.create_table(
        'drivers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('driver_type', sa.String(length=16), nullable=False, server_default='RETAIL'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_drivers_org_id', 'drivers', ['org_id'])
    op.create_index('ix_drivers_org_status', 'drivers', ['org_id', 'status'])

    op.create_table(
        'cylinder_sizes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('size', sa.String(length=32), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'size', name='uq_cylinder_sizes_org_size'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cylinder_sizes_org_id', 'cylinder_sizes', ['org_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_size_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_org_id', 'products', ['org_id'])
    op.create_index('ix_products_cylinder_size_id', 'products', ['cylinder_size_id'])
    op.create_index('ix_products_org_active', 'products', ['org_id', 'is_active'])

    # ============================================================================
    # Settlements (immutable)
    # ============================================================================
    op.create_table(
        'settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('total_value_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_value_cents', sa.Integer(), nullable=False),
        sa.Column('cash_deposited_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_package_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refill_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cylinder_deposits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinder_deposits', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=128), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_settlements_org_id', 'settlements', ['org_id'])
    op.create_index('ix_settlements_driver_id', 'settlements', ['driver_id'])
    op.create_index('ix_settlements_org_driver_date', 'settlements', ['org_id', 'driver_id', 'sale_date'])

    # ============================================================================
    # Inventory
    # ============================================================================
    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_tx_org_product', 'inventory_transactions', ['org_id', 'product_id'])
    op.create_index('ix_inventory_transactions_type', 'inventory_transactions', ['type'])
    op.create_index('ix_inventory_transactions_settlement_id', 'inventory_transactions', ['settlement_id'])
    op.create_index('ix_inventory_transactions_occurred_at', 'inventory_transactions', ['occurred_at'])

    op.create_table(
        'inventory_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_size_id', sa.Integer(), nullable=False),
        sa.Column('empty_cylinder_receivables', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'date', 'product_id', 'cylinder_size_id',
                            name='uq_inventory_records_org_date_product_size'),
        sa.CheckConstraint('empty_cylinder_receivables >= 0', name='ck_inventory_records_receivables_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_records_date', 'inventory_records', ['date'])

    op.create_table(
        'sale_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('settlement_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_size_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('sale_type', sa.String(length=16), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_value_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_value_cents', sa.Integer(), nullable=False),
        sa.Column('cash_deposited_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinders_deposited', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('inventory_transaction_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.ForeignKeyConstraint(['inventory_transaction_id'], ['inventory_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_records_quantity_positive'),
        sa.CheckConstraint('cylinders_deposited >= 0', name='ck_sale_records_deposits_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_records_settlement_id', 'sale_records', ['settlement_id'])
    op.create_index('ix_sale_records_org_driver_date', 'sale_records', ['org_id', 'driver_id', 'sale_date'])

    # ============================================================================
    # Receivables
    # ============================================================================
    op.create_table(
        'receivable_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('cash_receivables_change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinder_receivables_change', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cash_receivables_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cylinder_receivables', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinder_changes_by_size', sa.JSON(), nullable=False),
        sa.Column('opening_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('opening_cylinders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'driver_id', 'date', name='uq_receivable_records_key'),
        sa.CheckConstraint('total_cash_receivables_cents >= 0', name='ck_receivable_records_cash_nonneg'),
        sa.CheckConstraint('total_cylinder_receivables >= 0', name='ck_receivable_records_cyl_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receivable_records_driver_date', 'receivable_records', ['org_id', 'driver_id', 'date'])

    op.create_table(
        'customer_receivables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('receivable_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cylinder_size_id', sa.Integer(), nullable=True),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='CURRENT'),
        sa.Column('notes', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount_cents >= 0', name='ck_customer_receivables_amount_nonneg'),
        sa.CheckConstraint('quantity >= 0', name='ck_customer_receivables_quantity_nonneg'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_receivables_org_driver_status', 'customer_receivables',
                    ['org_id', 'driver_id', 'status'])
    op.create_index('ix_customer_receivables_org_customer', 'customer_receivables', ['org_id', 'customer_name'])
    op.create_index('ix_customer_receivables_settlement_id', 'customer_receivables', ['settlement_id'])

    op.create_table(
        'driver_cylinder_size_baselines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('cylinder_size_id', sa.Integer(), nullable=False),
        sa.Column('baseline_quantity', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=16), nullable=False, server_default='ONBOARDING'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['cylinder_size_id'], ['cylinder_sizes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('driver_id', 'cylinder_size_id', name='uq_baselines_driver_size'),
        sa.CheckConstraint('baseline_quantity > 0', name='ck_baselines_quantity_positive'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # Worker queue and audit trail
    # ============================================================================
    op.create_table(
        'recompute_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('ledger_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False, server_default='SETTLEMENT'),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_recompute_tasks_key_status', 'recompute_tasks',
                    ['org_id', 'driver_id', 'ledger_date', 'status'])
    op.create_index('ix_recompute_tasks_status_next', 'recompute_tasks', ['status', 'next_attempt_at'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        *_timestamps(),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_org_occurred', 'audit_events', ['org_id', 'occurred_at'])
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])


def downgrade():
    for table in (
        'audit_events',
        'recompute_tasks',
        'driver_cylinder_size_baselines',
        'customer_receivables',
        'receivable_records',
        'sale_records',
        'inventory_records',
        'inventory_transactions',
        'settlements',
        'products',
        'cylinder_sizes',
        'drivers',
        'organizations',
    ):
        op.drop_table(table)
