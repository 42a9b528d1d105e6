"""Initial schema: shops, registers, shifts, payment method ledger, service orders, audit

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Shops and the service type price list
2. Cash registers and shifts (at most one unclosed shift per register and per cashier)
3. Payment methods, register bindings and the append-only transaction log
4. Service orders and assigned staff
5. Audit events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


UNCLOSED = sa.text("status != 'closed'")


def upgrade():
    # ==========================================================================
    # 1. SHOPS AND SERVICE TYPES
    # ==========================================================================
    op.create_table('shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shops', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shops_code'), ['code'], unique=True)

    op.create_table('service_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('service_types', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_service_types_shop_id'), ['shop_id'], unique=False)

    # ==========================================================================
    # 2. REGISTERS AND SHIFTS
    # ==========================================================================
    op.create_table('cash_registers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('register_type', sa.String(length=16), nullable=False, server_default='STATIONARY'),
        sa.Column('location', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'name', name='uq_cash_registers_shop_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_registers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_registers_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_registers_status'), ['status'], unique=False)

    op.create_table('shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('total_sales_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_non_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returns_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['register_id'], ['cash_registers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shifts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shifts_register_id'), ['register_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_cashier_id'), ['cashier_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_opened_at'), ['opened_at'], unique=False)
    op.create_index('uq_shifts_register_unclosed', 'shifts', ['register_id'], unique=True,
                    sqlite_where=UNCLOSED, postgresql_where=UNCLOSED)
    op.create_index('uq_shifts_cashier_unclosed', 'shifts', ['cashier_id'], unique=True,
                    sqlite_where=UNCLOSED, postgresql_where=UNCLOSED)

    # ==========================================================================
    # 3. PAYMENT METHODS AND LEDGER
    # ==========================================================================
    op.create_table('payment_methods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('register_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.Column('system_type', sa.String(length=16), nullable=True),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('scope', sa.String(length=16), nullable=False, server_default='dedicated'),
        sa.Column('binding_key', sa.String(length=96), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('current_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.ForeignKeyConstraint(['register_id'], ['cash_registers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop_id', 'binding_key', name='uq_payment_methods_shop_binding_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_methods', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_methods_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_methods_register_id'), ['register_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_methods_status'), ['status'], unique=False)

    op.create_table('register_payment_methods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('register_id', sa.Integer(), nullable=False),
        sa.Column('payment_method_id', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['register_id'], ['cash_registers.id'], ),
        sa.ForeignKeyConstraint(['payment_method_id'], ['payment_methods.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('register_id', 'payment_method_id', name='uq_register_payment_methods_pair'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('register_payment_methods', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_register_payment_methods_register_id'), ['register_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_register_payment_methods_payment_method_id'), ['payment_method_id'], unique=False)

    # ==========================================================================
    # 4. SERVICE ORDERS
    # ==========================================================================
    op.create_table('service_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=True),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('service_type_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('original_price_cents', sa.Integer(), nullable=False),
        sa.Column('discount_percent', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('final_price_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method_id', sa.Integer(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('completed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['service_type_id'], ['service_types.id'], ),
        sa.ForeignKeyConstraint(['payment_method_id'], ['payment_methods.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('discount_percent >= 0 AND discount_percent <= 100', name='ck_service_orders_discount_range'),
        sa.CheckConstraint('final_price_cents <= original_price_cents', name='ck_service_orders_final_le_original'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('service_orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_service_orders_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_orders_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_orders_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_orders_vehicle_id'), ['vehicle_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_orders_service_type_id'), ['service_type_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_orders_status'), ['status'], unique=False)

    op.create_table('service_order_staff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['service_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'staff_id', name='uq_service_order_staff_pair')
    )
    with op.batch_alter_table('service_order_staff', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_service_order_staff_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_service_order_staff_staff_id'), ['staff_id'], unique=False)

    op.create_table('payment_method_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_method_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_before_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['payment_method_id'], ['payment_methods.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['service_orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_method_id', 'sequence', name='uq_pm_transactions_method_sequence'),
        sa.CheckConstraint('balance_after_cents = balance_before_cents + amount_cents', name='ck_pm_transactions_balance_chain'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_method_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_payment_method_id'), ['payment_method_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_transaction_type'), ['transaction_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_created_at'), ['created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_created_by_user_id'), ['created_by_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payment_method_transactions_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_pm_transactions_method_created', ['payment_method_id', 'created_at'], unique=False)

    # ==========================================================================
    # 5. AUDIT EVENTS
    # ==========================================================================
    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('register_id', sa.Integer(), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('payment_method_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_events_shop_id'), ['shop_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_register_id'), ['register_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_payment_method_id'), ['payment_method_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_audit_events_shop_occurred', ['shop_id', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('payment_method_transactions')
    op.drop_table('service_order_staff')
    op.drop_table('service_orders')
    op.drop_table('register_payment_methods')
    op.drop_table('payment_methods')
    op.drop_index('uq_shifts_cashier_unclosed', table_name='shifts')
    op.drop_index('uq_shifts_register_unclosed', table_name='shifts')
    op.drop_table('shifts')
    op.drop_table('cash_registers')
    op.drop_table('service_types')
    op.drop_table('shops')
