"""add_quickbooks_sync_tables

Revision ID: b2c3d4e5f6a7
Revises: a1b2c3d4e5f6
Create Date: 2026-10-17 00:02:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = 'b2c3d4e5f6a7'
down_revision: Union[str, None] = 'a1b2c3d4e5f6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create quickbooks_connections table
    op.create_table(
        'quickbooks_connections',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('realm_id', sa.String(), nullable=False),  # QuickBooks company ID
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('environment', sa.String(), nullable=False, server_default='sandbox'),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('refresh_token_expires_at', sa.DateTime(timezone=True), nullable=False),  # QB refresh tokens expire in ~100 days
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_quickbooks_connections_user_id', 'quickbooks_connections', ['user_id'], unique=True)

    # Create oauth_states table (CSRF state for the consent flow)
    op.create_table(
        'oauth_states',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('state', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False, server_default='quickbooks'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_oauth_states_state', 'oauth_states', ['state'], unique=True)

    # Create mapping tables
    op.create_table(
        'quickbooks_customer_mappings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('qb_customer_id', sa.String(), nullable=False),
        sa.Column('qb_display_name', sa.String(), nullable=True),
        sa.Column('sync_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'client_id', name='uq_qb_customer_mapping_client')
    )
    op.create_index('ix_quickbooks_customer_mappings_user_id', 'quickbooks_customer_mappings', ['user_id'])
    op.create_index('ix_qb_customer_mapping_qb_id', 'quickbooks_customer_mappings', ['user_id', 'qb_customer_id'])

    op.create_table(
        'quickbooks_invoice_mappings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('invoice_id', sa.String(), nullable=False),
        sa.Column('qb_invoice_id', sa.String(), nullable=False),
        sa.Column('qb_doc_number', sa.String(), nullable=True),
        sa.Column('sync_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'invoice_id', name='uq_qb_invoice_mapping_invoice')
    )
    op.create_index('ix_quickbooks_invoice_mappings_user_id', 'quickbooks_invoice_mappings', ['user_id'])
    op.create_index('ix_qb_invoice_mapping_qb_id', 'quickbooks_invoice_mappings', ['user_id', 'qb_invoice_id'])

    op.create_table(
        'quickbooks_payment_mappings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('payment_id', sa.String(), nullable=False),
        sa.Column('qb_payment_id', sa.String(), nullable=False),
        sa.Column('qb_invoice_id', sa.String(), nullable=True),
        sa.Column('sync_direction', sa.String(), nullable=False),  # to_qb | from_qb
        sa.Column('sync_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'payment_id', name='uq_qb_payment_mapping_payment'),
        sa.UniqueConstraint('user_id', 'qb_payment_id', name='uq_qb_payment_mapping_qb_id')
    )
    op.create_index('ix_quickbooks_payment_mappings_user_id', 'quickbooks_payment_mappings', ['user_id'])

    # Create quickbooks_sync_log table (append-only)
    op.create_table(
        'quickbooks_sync_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),  # customer | invoice | payment
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('qb_entity_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),  # create | update | delete
        sa.Column('status', sa.String(), nullable=False),  # success | failed | pending
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('request_payload', JSONB(), nullable=True),
        sa.Column('response_payload', JSONB(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_quickbooks_sync_log_user_id', 'quickbooks_sync_log', ['user_id'])
    op.create_index('ix_qb_sync_log_user_synced', 'quickbooks_sync_log', ['user_id', 'synced_at'])
    op.create_index('ix_qb_sync_log_entity', 'quickbooks_sync_log', ['entity_type', 'entity_id'])

    # Create quickbooks_sync_settings table
    op.create_table(
        'quickbooks_sync_settings',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('auto_sync_invoices', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('auto_sync_payments', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sync_payments_from_qb', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('min_invoice_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('sync_draft_invoices', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_payment_poll_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('poll_interval_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_quickbooks_sync_settings_user_id', 'quickbooks_sync_settings', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_quickbooks_sync_settings_user_id', table_name='quickbooks_sync_settings')
    op.drop_table('quickbooks_sync_settings')
    op.drop_index('ix_qb_sync_log_entity', table_name='quickbooks_sync_log')
    op.drop_index('ix_qb_sync_log_user_synced', table_name='quickbooks_sync_log')
    op.drop_index('ix_quickbooks_sync_log_user_id', table_name='quickbooks_sync_log')
    op.drop_table('quickbooks_sync_log')
    op.drop_index('ix_quickbooks_payment_mappings_user_id', table_name='quickbooks_payment_mappings')
    op.drop_table('quickbooks_payment_mappings')
    op.drop_index('ix_qb_invoice_mapping_qb_id', table_name='quickbooks_invoice_mappings')
    op.drop_index('ix_quickbooks_invoice_mappings_user_id', table_name='quickbooks_invoice_mappings')
    op.drop_table('quickbooks_invoice_mappings')
    op.drop_index('ix_qb_customer_mapping_qb_id', table_name='quickbooks_customer_mappings')
    op.drop_index('ix_quickbooks_customer_mappings_user_id', table_name='quickbooks_customer_mappings')
    op.drop_table('quickbooks_customer_mappings')
    op.drop_index('ix_oauth_states_state', table_name='oauth_states')
    op.drop_table('oauth_states')
    op.drop_index('ix_quickbooks_connections_user_id', table_name='quickbooks_connections')
    op.drop_table('quickbooks_connections')
