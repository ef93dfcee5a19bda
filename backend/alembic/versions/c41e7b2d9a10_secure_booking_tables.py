"""Create tenant, trust, hold and booking tables

Revision ID: c41e7b2d9a10
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c41e7b2d9a10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('vertical', sa.String(), nullable=True),
        sa.Column('assistant_type', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('locale', sa.String(), nullable=True),
        sa.Column('business_hours', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'branches',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('business_hours', sa.JSON(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_branches_tenant_id', 'branches', ['tenant_id'])

    op.create_table(
        'staff',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_staff_tenant_id', 'staff', ['tenant_id'])

    op.create_table(
        'vertical_booking_policies',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=True),
        sa.Column('vertical', sa.String(), nullable=False),
        sa.Column('confirmation_threshold', sa.Integer(), nullable=True),
        sa.Column('deposit_threshold', sa.Integer(), nullable=True),
        sa.Column('require_confirmation_below_trust', sa.Boolean(), nullable=True),
        sa.Column('require_deposit_below_trust', sa.Boolean(), nullable=True),
        sa.Column('deposit_amount_cents', sa.Integer(), nullable=True),
        sa.Column('hold_duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_vertical_booking_policies_tenant_id', 'vertical_booking_policies', ['tenant_id'])

    op.create_table(
        'customer_trust_scores',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('lead_id', sa.UUID(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('trust_score', sa.Integer(), nullable=True),
        sa.Column('is_vip', sa.Boolean(), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=True),
        sa.Column('block_reason', sa.Text(), nullable=True),
        sa.Column('blocked_until', sa.DateTime(), nullable=True),
        sa.Column('total_bookings', sa.Integer(), nullable=True),
        sa.Column('completed_bookings', sa.Integer(), nullable=True),
        sa.Column('no_shows', sa.Integer(), nullable=True),
        sa.Column('last_score_change_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customer_trust_scores_tenant_id', 'customer_trust_scores', ['tenant_id'])
    op.create_index('ix_customer_trust_scores_lead_id', 'customer_trust_scores', ['lead_id'])
    op.create_index('ix_customer_trust_scores_phone_number', 'customer_trust_scores', ['phone_number'])

    op.create_table(
        'customer_blocks',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('lead_id', sa.UUID(), nullable=True),
        sa.Column('block_reason', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('unblock_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_customer_blocks_tenant_id', 'customer_blocks', ['tenant_id'])
    op.create_index('ix_customer_blocks_phone_number', 'customer_blocks', ['phone_number'])

    op.create_table(
        'trust_score_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('trust_score_id', sa.UUID(), nullable=False),
        sa.Column('reference_id', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('score_before', sa.Integer(), nullable=False),
        sa.Column('score_after', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['trust_score_id'], ['customer_trust_scores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'reference_id', 'reason', name='uq_trust_event_reference')
    )

    op.create_table(
        'booking_holds',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=True),
        sa.Column('customer_phone', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=True),
        sa.Column('lead_id', sa.UUID(), nullable=True),
        sa.Column('hold_type', sa.String(), nullable=False),
        sa.Column('slot_datetime', sa.DateTime(), nullable=False),
        sa.Column('end_datetime', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.String(), nullable=True),
        sa.Column('staff_id', sa.UUID(), nullable=True),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('trust_score_at_hold', sa.Integer(), nullable=True),
        sa.Column('requires_confirmation', sa.Boolean(), nullable=True),
        sa.Column('requires_deposit', sa.Boolean(), nullable=True),
        sa.Column('deposit_amount_cents', sa.Integer(), nullable=True),
        sa.Column('deposit_paid', sa.Boolean(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('release_reason', sa.String(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.Column('converted_to_id', sa.UUID(), nullable=True),
        sa.Column('converted_to_type', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'idempotency_key', name='uq_booking_holds_idempotency')
    )
    op.create_index(
        'idx_booking_holds_slot',
        'booking_holds',
        ['tenant_id', 'branch_id', 'status', 'slot_datetime']
    )
    op.create_index('ix_booking_holds_session_id', 'booking_holds', ['session_id'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=False),
        sa.Column('branch_id', sa.UUID(), nullable=True),
        sa.Column('booking_type', sa.String(), nullable=False),
        sa.Column('customer_name', sa.String(), nullable=False),
        sa.Column('customer_phone', sa.String(), nullable=False),
        sa.Column('customer_email', sa.String(), nullable=True),
        sa.Column('lead_id', sa.UUID(), nullable=True),
        sa.Column('booking_datetime', sa.DateTime(), nullable=False),
        sa.Column('end_datetime', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('party_size', sa.Integer(), nullable=True),
        sa.Column('service_id', sa.String(), nullable=True),
        sa.Column('staff_id', sa.UUID(), nullable=True),
        sa.Column('confirmation_code', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('hold_id', sa.UUID(), nullable=True),
        sa.Column('trust_score_at_booking', sa.Integer(), nullable=True),
        sa.Column('deposit_payment_id', sa.String(), nullable=True),
        sa.Column('source_call_id', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id'], ),
        sa.ForeignKeyConstraint(['hold_id'], ['booking_holds.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('confirmation_code')
    )
    op.create_index(
        'idx_bookings_tenant_branch_datetime',
        'bookings',
        ['tenant_id', 'branch_id', 'booking_datetime']
    )

    op.create_table(
        'tool_execution_logs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tenant_id', sa.UUID(), nullable=True),
        sa.Column('branch_id', sa.UUID(), nullable=True),
        sa.Column('call_id', sa.String(), nullable=True),
        sa.Column('tool_name', sa.String(), nullable=False),
        sa.Column('parameters', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_code', sa.String(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tool_execution_logs_tenant_id', 'tool_execution_logs', ['tenant_id'])
    op.create_index('ix_tool_execution_logs_call_id', 'tool_execution_logs', ['call_id'])


def downgrade() -> None:
    op.drop_index('ix_tool_execution_logs_call_id', table_name='tool_execution_logs')
    op.drop_index('ix_tool_execution_logs_tenant_id', table_name='tool_execution_logs')
    op.drop_table('tool_execution_logs')

    op.drop_index('idx_bookings_tenant_branch_datetime', table_name='bookings')
    op.drop_table('bookings')

    op.drop_index('ix_booking_holds_session_id', table_name='booking_holds')
    op.drop_index('idx_booking_holds_slot', table_name='booking_holds')
    op.drop_table('booking_holds')

    op.drop_table('trust_score_events')

    op.drop_index('ix_customer_blocks_phone_number', table_name='customer_blocks')
    op.drop_index('ix_customer_blocks_tenant_id', table_name='customer_blocks')
    op.drop_table('customer_blocks')

    op.drop_index('ix_customer_trust_scores_phone_number', table_name='customer_trust_scores')
    op.drop_index('ix_customer_trust_scores_lead_id', table_name='customer_trust_scores')
    op.drop_index('ix_customer_trust_scores_tenant_id', table_name='customer_trust_scores')
    op.drop_table('customer_trust_scores')

    op.drop_index('ix_vertical_booking_policies_tenant_id', table_name='vertical_booking_policies')
    op.drop_table('vertical_booking_policies')

    op.drop_index('ix_staff_tenant_id', table_name='staff')
    op.drop_table('staff')

    op.drop_index('ix_branches_tenant_id', table_name='branches')
    op.drop_table('branches')

    op.drop_table('tenants')
