"""Initial schema for the PostgreSQL backend

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates 6 tables:
- shipments
- organizations
- api_keys
- credit_accounts (balance >= 0 enforced)
- credit_ledger
- compliance_checks
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create shipments table
    op.create_table(
        'shipments',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('shipper_id', sa.String(length=64), nullable=False),
        sa.Column('shipper_name', sa.String(length=255), nullable=False),
        sa.Column('shipper_country', sa.String(length=2), nullable=True),
        sa.Column('consignee_id', sa.String(length=64), nullable=False),
        sa.Column('consignee_name', sa.String(length=255), nullable=False),
        sa.Column('consignee_country', sa.String(length=2), nullable=True),
        sa.Column('origin_country', sa.String(length=2), nullable=True),
        sa.Column('destination_country', sa.String(length=2), nullable=True),
        sa.Column('port_of_loading', sa.String(length=10), nullable=True),
        sa.Column('port_of_loading_name', sa.String(length=255), nullable=True),
        sa.Column('port_of_discharge', sa.String(length=10), nullable=True),
        sa.Column('port_of_discharge_name', sa.String(length=255), nullable=True),
        sa.Column('hs_code', sa.String(length=10), nullable=False),
        sa.Column('hs_chapter', sa.String(length=2), nullable=True),
        sa.Column('product_description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=True),
        sa.Column('quantity_unit', sa.String(length=20), nullable=True),
        sa.Column('declared_value_usd', sa.Float(), nullable=True),
        sa.Column('unit_price_usd', sa.Float(), nullable=True),
        sa.Column('transport_mode', sa.String(length=20), nullable=True),
        sa.Column('carrier', sa.String(length=100), nullable=True),
        sa.Column('shipment_date', sa.Date(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_shipments_shipper_id'), 'shipments', ['shipper_id'], unique=False)
    op.create_index(op.f('ix_shipments_consignee_id'), 'shipments', ['consignee_id'], unique=False)
    op.create_index(op.f('ix_shipments_origin_country'), 'shipments', ['origin_country'], unique=False)
    op.create_index(op.f('ix_shipments_destination_country'), 'shipments', ['destination_country'], unique=False)
    op.create_index(op.f('ix_shipments_hs_code'), 'shipments', ['hs_code'], unique=False)
    op.create_index(op.f('ix_shipments_hs_chapter'), 'shipments', ['hs_chapter'], unique=False)
    op.create_index(op.f('ix_shipments_shipment_date'), 'shipments', ['shipment_date'], unique=False)
    op.create_index('idx_shipments_route', 'shipments', ['origin_country', 'destination_country'], unique=False)

    # Create organizations table
    op.create_table(
        'organizations',
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('seat_limit', sa.Integer(), nullable=False),
        sa.Column('api_requests_per_minute', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('org_id')
    )

    # Create api_keys table
    op.create_table(
        'api_keys',
        sa.Column('key_hash', sa.String(length=64), nullable=False),
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.org_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('key_hash')
    )
    op.create_index(op.f('ix_api_keys_org_id'), 'api_keys', ['org_id'], unique=False)

    # Create credit_accounts table
    op.create_table(
        'credit_accounts',
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('credit_type', sa.String(length=40), nullable=False),
        sa.Column('allocated', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_credit_balance_non_negative'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.org_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('org_id', 'credit_type')
    )

    # Create credit_ledger table
    op.create_table(
        'credit_ledger',
        sa.Column('entry_id', sa.String(length=36), nullable=False),
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('credit_type', sa.String(length=40), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False),
        sa.Column('operation', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_credit_ledger_amount_positive'),
        sa.PrimaryKeyConstraint('entry_id')
    )
    op.create_index(op.f('ix_credit_ledger_org_id'), 'credit_ledger', ['org_id'], unique=False)
    op.create_index('idx_credit_ledger_org_type', 'credit_ledger', ['org_id', 'credit_type'], unique=False)

    # Create compliance_checks table
    op.create_table(
        'compliance_checks',
        sa.Column('check_id', sa.String(length=36), nullable=False),
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('company_id', sa.String(length=64), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('hits', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('lists_checked', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('checked_by', sa.String(length=64), nullable=True),
        sa.Column('checked_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('check_id'),
        sa.UniqueConstraint('check_id', 'org_id', name='uq_compliance_check_org')
    )
    op.create_index(op.f('ix_compliance_checks_org_id'), 'compliance_checks', ['org_id'], unique=False)
    op.create_index('idx_compliance_checks_org_time', 'compliance_checks', ['org_id', 'checked_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_compliance_checks_org_time', table_name='compliance_checks')
    op.drop_index(op.f('ix_compliance_checks_org_id'), table_name='compliance_checks')
    op.drop_table('compliance_checks')

    op.drop_index('idx_credit_ledger_org_type', table_name='credit_ledger')
    op.drop_index(op.f('ix_credit_ledger_org_id'), table_name='credit_ledger')
    op.drop_table('credit_ledger')

    op.drop_table('credit_accounts')

    op.drop_index(op.f('ix_api_keys_org_id'), table_name='api_keys')
    op.drop_table('api_keys')

    op.drop_table('organizations')

    op.drop_index('idx_shipments_route', table_name='shipments')
    op.drop_index(op.f('ix_shipments_shipment_date'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_hs_chapter'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_hs_code'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_destination_country'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_origin_country'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_consignee_id'), table_name='shipments')
    op.drop_index(op.f('ix_shipments_shipper_id'), table_name='shipments')
    op.drop_table('shipments')
