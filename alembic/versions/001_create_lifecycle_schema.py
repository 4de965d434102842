"""Create shipment lifecycle schema

Revision ID: 001_lifecycle
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_lifecycle'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    ]


def upgrade():
    """Create organizations, branches, bookings, manifests and unloading tables"""

    # ====================
    # ORGANIZATIONS / BRANCHES
    # ====================
    op.create_table(
        'organizations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(10), unique=True, nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )

    op.create_table(
        'branches',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(3), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('organization_id', 'code', name='uq_branch_org_code'),
    )
    op.create_index('ix_branches_organization_id', 'branches', ['organization_id'])

    # ====================
    # MASTERS
    # ====================
    op.create_table(
        'customers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('mobile', sa.String(20), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('gstin', sa.String(15), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'mobile', name='uq_customer_org_mobile'),
    )
    op.create_index('ix_customers_organization_id', 'customers', ['organization_id'])
    op.create_index('ix_customers_branch_id', 'customers', ['branch_id'])
    op.create_index('ix_customers_mobile', 'customers', ['mobile'])

    op.create_table(
        'vehicles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('vehicle_number', sa.String(50), nullable=False),
        sa.Column('vehicle_type', sa.String(50), nullable=True),
        sa.Column('capacity_kg', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('organization_id', 'vehicle_number', name='uq_vehicle_org_number'),
    )
    op.create_index('ix_vehicles_organization_id', 'vehicles', ['organization_id'])

    # ====================
    # DOCUMENT SEQUENCES
    # ====================
    op.create_table(
        'document_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('scope', sa.String(30), nullable=False, comment='LR:{ORIGIN}-{DEST} or OGPL'),
        sa.Column('year', sa.Integer, nullable=False),
        sa.Column('current_number', sa.Integer, server_default='0', nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('scope', 'year', name='uq_document_sequence_scope_year'),
    )

    # ====================
    # MANIFESTS
    # ====================
    op.create_table(
        'manifests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('ogpl_number', sa.String(30), unique=True, nullable=False),
        sa.Column('vehicle_id', UUID(as_uuid=True), sa.ForeignKey('vehicles.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('from_branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('to_branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('transit_date', sa.Date, nullable=False),
        sa.Column('status', sa.String(20), server_default='created', nullable=False),
        sa.Column('primary_driver_name', sa.String(200), nullable=False),
        sa.Column('primary_driver_mobile', sa.String(20), nullable=False),
        sa.Column('secondary_driver_name', sa.String(200), nullable=True),
        sa.Column('secondary_driver_mobile', sa.String(20), nullable=True),
        sa.Column('seal_number', sa.String(50), nullable=True),
        sa.Column('remarks', sa.Text, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unloaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    for column in ('organization_id', 'ogpl_number', 'vehicle_id', 'from_branch_id', 'to_branch_id', 'status', 'created_at'):
        op.create_index(f'ix_manifests_{column}', 'manifests', [column])

    # ====================
    # UNLOADING SESSIONS (before bookings: bookings reference them)
    # ====================
    op.create_table(
        'unloading_sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('manifest_id', UUID(as_uuid=True), sa.ForeignKey('manifests.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('unloaded_by', UUID(as_uuid=True), nullable=True),
        sa.Column('total_items', sa.Integer, server_default='0', nullable=False),
        sa.Column('items_good', sa.Integer, server_default='0', nullable=False),
        sa.Column('items_damaged', sa.Integer, server_default='0', nullable=False),
        sa.Column('items_missing', sa.Integer, server_default='0', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('unloaded_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    for column in ('organization_id', 'manifest_id', 'branch_id', 'unloaded_at'):
        op.create_index(f'ix_unloading_sessions_{column}', 'unloading_sessions', [column])

    # ====================
    # BOOKINGS
    # ====================
    op.create_table(
        'bookings',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True), sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('lr_number', sa.String(30), unique=True, nullable=False),
        sa.Column('from_branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('to_branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('consignor_name', sa.String(200), nullable=False),
        sa.Column('consignor_mobile', sa.String(20), nullable=False),
        sa.Column('consignor_address', sa.Text, nullable=False),
        sa.Column('consignor_gstin', sa.String(15), nullable=True),
        sa.Column('consignee_name', sa.String(200), nullable=False),
        sa.Column('consignee_mobile', sa.String(20), nullable=False),
        sa.Column('consignee_address', sa.Text, nullable=False),
        sa.Column('consignee_gstin', sa.String(15), nullable=True),
        sa.Column('destination_address', sa.Text, nullable=False),
        sa.Column('package_count', sa.Integer, server_default='0'),
        sa.Column('weight_kg', sa.Numeric(12, 2), server_default='0'),
        sa.Column('declared_value', sa.Numeric(14, 2), server_default='0'),
        sa.Column('payment_mode', sa.String(20), server_default='paid', nullable=False),
        sa.Column('freight_amount', sa.Numeric(12, 2), server_default='0'),
        sa.Column('loading_charges', sa.Numeric(12, 2), server_default='0'),
        sa.Column('unloading_charges', sa.Numeric(12, 2), server_default='0'),
        sa.Column('insurance_charge', sa.Numeric(12, 2), server_default='0'),
        sa.Column('packaging_charge', sa.Numeric(12, 2), server_default='0'),
        sa.Column('total_amount', sa.Numeric(14, 2), server_default='0'),
        sa.Column('remarks', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), server_default='booked', nullable=False),
        sa.Column('version', sa.Integer, server_default='1', nullable=False),
        sa.Column('loaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('unloading_status', sa.String(20), nullable=True),
        sa.Column('unloading_session_id', UUID(as_uuid=True), sa.ForeignKey('unloading_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('pod_status', sa.String(20), nullable=True),
        sa.Column('pod_data', JSONB, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )
    for column in ('organization_id', 'lr_number', 'from_branch_id', 'to_branch_id', 'customer_id', 'status', 'created_at'):
        op.create_index(f'ix_bookings_{column}', 'bookings', [column])

    op.create_table(
        'booking_articles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('booking_id', UUID(as_uuid=True), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('weight_kg', sa.Numeric(12, 2), server_default='0'),
        sa.Column('rate', sa.Numeric(12, 2), server_default='0'),
        sa.Column('amount', sa.Numeric(12, 2), server_default='0'),
    )
    op.create_index('ix_booking_articles_booking_id', 'booking_articles', ['booking_id'])

    # ====================
    # LOADING / UNLOADING
    # ====================
    op.create_table(
        'loading_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('manifest_id', UUID(as_uuid=True), sa.ForeignKey('manifests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('booking_id', UUID(as_uuid=True), sa.ForeignKey('bookings.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('loaded_by', UUID(as_uuid=True), nullable=True),
        sa.Column('loaded_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('manifest_id', 'booking_id', name='uq_loading_manifest_booking'),
    )
    op.create_index('ix_loading_records_manifest_id', 'loading_records', ['manifest_id'])
    op.create_index('ix_loading_records_booking_id', 'loading_records', ['booking_id'])

    op.create_table(
        'unloading_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('manifest_id', UUID(as_uuid=True), sa.ForeignKey('manifests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', UUID(as_uuid=True), sa.ForeignKey('unloading_sessions.id', ondelete='CASCADE'), unique=True, nullable=False),
        sa.Column('unloaded_by', UUID(as_uuid=True), nullable=True),
        sa.Column('conditions', JSONB, nullable=False),
        sa.Column('unloaded_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_unloading_records_manifest_id', 'unloading_records', ['manifest_id'])

    op.create_table(
        'unloading_progress',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('manifest_id', UUID(as_uuid=True), sa.ForeignKey('manifests.id', ondelete='CASCADE'), unique=True, nullable=False),
        sa.Column('session_id', UUID(as_uuid=True), sa.ForeignKey('unloading_sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('status', sa.String(20), server_default='in_progress', nullable=False),
        sa.Column('last_completed_step', sa.String(30), server_default='validated', nullable=False),
        sa.Column('processed_booking_ids', JSONB, server_default='[]', nullable=False),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('attempts', sa.Integer, server_default='1', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )


def downgrade():
    """Drop lifecycle tables in reverse dependency order"""
    op.drop_table('unloading_progress')
    op.drop_table('unloading_records')
    op.drop_table('loading_records')
    op.drop_table('booking_articles')
    op.drop_table('bookings')
    op.drop_table('unloading_sessions')
    op.drop_table('manifests')
    op.drop_table('document_sequences')
    op.drop_table('vehicles')
    op.drop_table('customers')
    op.drop_table('branches')
    op.drop_table('organizations')
