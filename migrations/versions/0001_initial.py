"""initial tables

Revision ID: 0001
Revises: 
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

# перечисления храним строками (native_enum=False в моделях)
ENUM = sa.String(32)


def upgrade():
    op.create_table('environments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
    )

    op.create_table('environment_instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('environment_id', sa.String(36), sa.ForeignKey('environments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('booking_status', ENUM, nullable=False, server_default='Available'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_environment_instances_environment_id', 'environment_instances', ['environment_id'])

    op.create_table('infra_components',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('env_instance_id', sa.String(36), sa.ForeignKey('environment_instances.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('booking_status', ENUM, nullable=False, server_default='Available'),
        sa.Column('current_booking_id', sa.String(36), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_infra_component_instance', 'infra_components', ['env_instance_id'])

    op.create_table('user_groups',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False, unique=True),
    )

    op.create_table('environment_bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_datetime', sa.DateTime(), nullable=False),
        sa.Column('end_datetime', sa.DateTime(), nullable=False),
        sa.Column('booking_status', ENUM, nullable=False, server_default='Requested'),
        sa.Column('booking_priority', ENUM, nullable=False, server_default='Normal'),
        sa.Column('is_critical_booking', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('conflict_status', ENUM, nullable=False, server_default='None'),
        sa.Column('conflict_notes', sa.Text(), nullable=True),
        sa.Column('requested_by_user_id', sa.String(64), nullable=False),
        sa.Column('approved_by_user_id', sa.String(64), nullable=True),
        sa.Column('owning_group_id', sa.String(36), sa.ForeignKey('user_groups.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('start_datetime < end_datetime', name='ck_booking_window'),
    )
    op.create_index('ix_environment_bookings_start_datetime', 'environment_bookings', ['start_datetime'])
    op.create_index('ix_environment_bookings_end_datetime', 'environment_bookings', ['end_datetime'])
    op.create_index('ix_booking_window', 'environment_bookings', ['start_datetime', 'end_datetime'])

    op.create_table('booking_resources',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('environment_bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('resource_type', ENUM, nullable=False),
        sa.Column('resource_ref_id', sa.String(36), nullable=False),
        sa.Column('source_env_instance_id', sa.String(36), nullable=True),
        sa.Column('logical_role', sa.String(100), nullable=True),
        sa.Column('resource_conflict_status', ENUM, nullable=False, server_default='None'),
        sa.Column('conflicting_booking_id', sa.String(36), nullable=True),
        sa.Column('resource_booking_status', ENUM, nullable=True),
    )
    op.create_index('ix_booking_resources_booking_id', 'booking_resources', ['booking_id'])
    op.create_index('ix_booking_resources_source_env_instance_id', 'booking_resources', ['source_env_instance_id'])
    op.create_index('ix_booking_resource_ref', 'booking_resources', ['resource_type', 'resource_ref_id'])

    op.create_table('refresh_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('entity_type', ENUM, nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('entity_name', sa.String(255), nullable=True),
        sa.Column('intent_status', ENUM, nullable=False, server_default='REQUESTED'),
        sa.Column('planned_date', sa.DateTime(), nullable=False),
        sa.Column('planned_end_date', sa.DateTime(), nullable=True),
        sa.Column('impact_type', ENUM, nullable=False, server_default='DATA_OVERWRITE'),
        sa.Column('estimated_downtime_minutes', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('requested_by_user_id', sa.String(64), nullable=False),
        sa.Column('conflict_flag', ENUM, nullable=False, server_default='NONE'),
        sa.Column('conflict_summary', sa.JSON(), nullable=True),
        sa.Column('impacted_teams', sa.JSON(), nullable=True),
        sa.Column('approved_by_user_id', sa.String(64), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_refresh_intents_entity_id', 'refresh_intents', ['entity_id'])
    op.create_index('ix_refresh_intents_planned_date', 'refresh_intents', ['planned_date'])

    op.create_table('refresh_booking_conflicts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('refresh_intent_id', sa.String(36), sa.ForeignKey('refresh_intents.id', ondelete='CASCADE'), nullable=False),
        sa.Column('booking_id', sa.String(36), sa.ForeignKey('environment_bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('conflict_type', ENUM, nullable=False, server_default='OVERLAP'),
        sa.Column('severity', ENUM, nullable=False),
        sa.Column('resolution_status', ENUM, nullable=False, server_default='UNRESOLVED'),
        sa.Column('overlap_start', sa.DateTime(), nullable=False),
        sa.Column('overlap_end', sa.DateTime(), nullable=False),
        sa.Column('overlap_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('booking_is_critical', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('booking_priority', ENUM, nullable=True),
        sa.Column('auto_detected', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('resolved_by_user_id', sa.String(64), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('booking_owner_notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('refresh_intent_id', 'booking_id', name='uq_conflict_intent_booking'),
    )
    op.create_index('ix_refresh_booking_conflicts_refresh_intent_id', 'refresh_booking_conflicts', ['refresh_intent_id'])
    op.create_index('ix_refresh_booking_conflicts_booking_id', 'refresh_booking_conflicts', ['booking_id'])


def downgrade():
    op.drop_table('refresh_booking_conflicts')
    op.drop_table('refresh_intents')
    op.drop_table('booking_resources')
    op.drop_table('environment_bookings')
    op.drop_table('user_groups')
    op.drop_table('infra_components')
    op.drop_table('environment_instances')
    op.drop_table('environments')
