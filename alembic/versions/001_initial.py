# alembic/versions/001_initial.py

"""Initial trade ledger schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(precision=18, scale=6)
PERCENT = sa.Numeric(precision=12, scale=4)

ENUMS = {
    "invoiceprocessingstatus": ("PENDING", "PROCESSING", "SUCCESS", "PARTIAL_SUCCESS", "ERROR", "CANCELLED"),
    "side": ("BUY", "SELL"),
    "tradetype": ("DAY", "SWING"),
    "operationstatus": ("ACTIVE", "WINNER", "LOSER", "BREAKEVEN", "HIDDEN"),
    "groupstatus": ("OPEN", "PARTIALLY_CLOSED", "CLOSED"),
    "operationrole": ("ORIGINAL", "NEW_ENTRY", "PARTIAL_EXIT", "CONSOLIDATED_RESULT"),
    "positionstatus": ("OPEN", "PARTIAL", "CLOSED"),
    "exitstrategy": ("FIFO",),
    "mappingtype": ("NEW_OPERATION", "EXISTING_OPERATION_EXIT", "DAY_TRADE_ENTRY", "DAY_TRADE_EXIT"),
}


def _enum(name):
    # Types are created once in upgrade(); columns only reference them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade():
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # Create invoice table
    op.create_table('invoice',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('trading_date', sa.Date(), nullable=False),
        sa.Column('settlement_date', sa.Date(), nullable=True),
        sa.Column('brokerage', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('processing_status', _enum("invoiceprocessingstatus"), nullable=False),
        sa.Column('processing_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'brokerage', 'invoice_number', name='uq_invoice_user_number')
    )
    op.create_index('ix_invoice_trading_date', 'invoice', ['trading_date'])
    op.create_index('ix_invoice_user_id', 'invoice', ['user_id'])

    # Create invoice_item table
    op.create_table('invoice_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('asset_code', sa.String(length=50), nullable=True),
        sa.Column('operation_type', sa.String(length=20), nullable=True),
        sa.Column('market_type', sa.String(length=50), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('unit_price', MONEY, nullable=True),
        sa.Column('total_value', MONEY, nullable=True),
        sa.Column('trade_date', sa.Date(), nullable=True),
        sa.Column('is_day_trade', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('observations', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoice.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id', 'sequence_number', name='uq_invoice_item_sequence')
    )
    op.create_index('ix_invoice_item_invoice_id', 'invoice_item', ['invoice_id'])

    # Create trade_operation table
    op.create_table('trade_operation',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('asset_code', sa.String(length=50), nullable=False),
        sa.Column('side', _enum("side"), nullable=False),
        sa.Column('trade_type', _enum("tradetype"), nullable=False),
        sa.Column('status', _enum("operationstatus"), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('entry_unit_price', MONEY, nullable=False),
        sa.Column('entry_total_value', MONEY, nullable=False),
        sa.Column('exit_date', sa.Date(), nullable=True),
        sa.Column('exit_unit_price', MONEY, nullable=True),
        sa.Column('exit_total_value', MONEY, nullable=True),
        sa.Column('profit_loss', MONEY, nullable=False, server_default='0'),
        sa.Column('profit_loss_percentage', PERCENT, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_operation_user_asset', 'trade_operation', ['user_id', 'asset_code'])
    op.create_index('idx_operation_status', 'trade_operation', ['status'])

    # Create operation_group table
    op.create_table('operation_group',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('asset_code', sa.String(length=50), nullable=False),
        sa.Column('status', _enum("groupstatus"), nullable=False),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('closed_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('total_profit', MONEY, nullable=False, server_default='0'),
        sa.Column('average_exit_price', MONEY, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_operation_group_user_id', 'operation_group', ['user_id'])

    # Create operation_group_item table
    op.create_table('operation_group_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('operation_id', sa.Integer(), nullable=False),
        sa.Column('role', _enum("operationrole"), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['group_id'], ['operation_group.id']),
        sa.ForeignKeyConstraint(['operation_id'], ['trade_operation.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('group_id', 'sequence_number', name='uq_group_item_sequence')
    )
    op.create_index('ix_operation_group_item_group_id', 'operation_group_item', ['group_id'])

    # Create position table
    op.create_table('position',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('asset_code', sa.String(length=50), nullable=False),
        sa.Column('direction', _enum("side"), nullable=False),
        sa.Column('status', _enum("positionstatus"), nullable=False),
        sa.Column('open_date', sa.Date(), nullable=False),
        sa.Column('close_date', sa.Date(), nullable=True),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('average_price', MONEY, nullable=False),
        sa.Column('total_realized_profit', MONEY, nullable=False, server_default='0'),
        sa.Column('total_realized_profit_percentage', PERCENT, nullable=False, server_default='0'),
        sa.Column('group_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['group_id'], ['operation_group.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_position_user_asset_status', 'position', ['user_id', 'asset_code', 'status'])

    # Create entry_lot table
    op.create_table('entry_lot',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('position_id', sa.Integer(), nullable=False),
        sa.Column('operation_id', sa.Integer(), nullable=True),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', MONEY, nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('is_fully_consumed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['position_id'], ['position.id']),
        sa.ForeignKeyConstraint(['operation_id'], ['trade_operation.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_entry_lot_position_id', 'entry_lot', ['position_id'])

    # Create exit_record table
    op.create_table('exit_record',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_lot_id', sa.Integer(), nullable=False),
        sa.Column('exit_operation_id', sa.Integer(), nullable=False),
        sa.Column('exit_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('entry_unit_price', MONEY, nullable=False),
        sa.Column('exit_unit_price', MONEY, nullable=False),
        sa.Column('profit_loss', MONEY, nullable=False),
        sa.Column('profit_loss_percentage', PERCENT, nullable=False),
        sa.Column('trade_type', _enum("tradetype"), nullable=False),
        sa.Column('applied_strategy', _enum("exitstrategy"), nullable=False),
        sa.ForeignKeyConstraint(['entry_lot_id'], ['entry_lot.id']),
        sa.ForeignKeyConstraint(['exit_operation_id'], ['trade_operation.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_exit_record_entry_lot_id', 'exit_record', ['entry_lot_id'])

    # Create source_mapping table
    op.create_table('source_mapping',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operation_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('line_item_id', sa.Integer(), nullable=False),
        sa.Column('mapping_type', _enum("mappingtype"), nullable=False),
        sa.Column('processing_sequence', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['operation_id'], ['trade_operation.id']),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoice.id']),
        sa.ForeignKeyConstraint(['line_item_id'], ['invoice_item.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('line_item_id'),
        sa.UniqueConstraint('invoice_id', 'processing_sequence', name='uq_mapping_invoice_sequence')
    )
    op.create_index('ix_source_mapping_operation_id', 'source_mapping', ['operation_id'])


def downgrade():
    op.drop_table('source_mapping')
    op.drop_table('exit_record')
    op.drop_table('entry_lot')
    op.drop_table('position')
    op.drop_table('operation_group_item')
    op.drop_table('operation_group')
    op.drop_table('trade_operation')
    op.drop_table('invoice_item')
    op.drop_table('invoice')
    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
