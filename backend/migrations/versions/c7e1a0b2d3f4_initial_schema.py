"""initial schema

Revision ID: c7e1a0b2d3f4
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete CheckRTO schema:
- workshops: tenant root
- vehicles: plate-keyed vehicle records
- sticker_orders / stickers: sticker registry with optimistic-lock version
- applications: inspection cases with write-once result / result_2
- inspection_steps / step_observations: workshop checklist configuration
- inspections / inspection_step_results / inspection_observation_checks
- audit_events: append-only transition trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c7e1a0b2d3f4'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=True):
    cols = [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]
    if updated:
        cols.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                      server_default=sa.text('CURRENT_TIMESTAMP'))
        )
    return cols


def upgrade():
    # ============================================================================
    # workshops: tenant root
    # ============================================================================
    op.create_table(
        'workshops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_workshops_code', 'workshops', ['code'], unique=True)
    op.create_index('ix_workshops_is_active', 'workshops', ['is_active'])

    op.create_table(
        'vehicles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('license_plate', sa.String(length=16), nullable=False),
        sa.Column('brand', sa.String(length=64), nullable=True),
        sa.Column('model', sa.String(length=64), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_vehicles_license_plate', 'vehicles', ['license_plate'], unique=True)

    # ============================================================================
    # applications: status, write-once results, optimistic lock
    # ============================================================================
    op.create_table(
        'applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workshop_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('result', sa.String(length=16), nullable=True),
        sa.Column('result_2', sa.String(length=16), nullable=True),
        sa.Column('license_plate', sa.String(length=16), nullable=False),
        sa.Column('owner_ref', sa.String(length=64), nullable=True),
        sa.Column('driver_ref', sa.String(length=64), nullable=True),
        sa.Column('inspection_1_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('inspection_2_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['workshop_id'], ['workshops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_applications_workshop_id', 'applications', ['workshop_id'])
    op.create_index('ix_applications_status', 'applications', ['status'])
    op.create_index('ix_applications_license_plate', 'applications', ['license_plate'])
    op.create_index('ix_applications_workshop_status', 'applications', ['workshop_id', 'status'])
    op.create_index('ix_applications_workshop_plate', 'applications', ['workshop_id', 'license_plate'])

    # ============================================================================
    # stickers: registry; the unique plate index backs "one active sticker per plate"
    # ============================================================================
    op.create_table(
        'sticker_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workshop_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['workshop_id'], ['workshops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sticker_orders_workshop_id', 'sticker_orders', ['workshop_id'])

    op.create_table(
        'stickers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workshop_id', sa.Integer(), nullable=False),
        sa.Column('sticker_order_id', sa.Integer(), nullable=True),
        sa.Column('sticker_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('assigned_license_plate', sa.String(length=16), nullable=True),
        sa.Column('assigned_application_id', sa.Integer(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['workshop_id'], ['workshops.id'], ),
        sa.ForeignKeyConstraint(['sticker_order_id'], ['sticker_orders.id'], ),
        sa.ForeignKeyConstraint(['assigned_application_id'], ['applications.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('assigned_license_plate'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stickers_workshop_id', 'stickers', ['workshop_id'])
    op.create_index('ix_stickers_sticker_order_id', 'stickers', ['sticker_order_id'])
    op.create_index('ix_stickers_sticker_number', 'stickers', ['sticker_number'], unique=True)
    op.create_index('ix_stickers_status', 'stickers', ['status'])
    op.create_index('ix_stickers_assigned_application_id', 'stickers', ['assigned_application_id'])
    op.create_index('ix_stickers_workshop_status', 'stickers', ['workshop_id', 'status', 'id'])

    # ============================================================================
    # step configuration
    # ============================================================================
    op.create_table(
        'inspection_steps',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workshop_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['workshop_id'], ['workshops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workshop_id', 'name', name='uq_inspection_steps_workshop_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inspection_steps_workshop_id', 'inspection_steps', ['workshop_id'])
    op.create_index('ix_inspection_steps_workshop_position', 'inspection_steps', ['workshop_id', 'position'])

    op.create_table(
        'step_observations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['step_id'], ['inspection_steps.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_step_observations_step_id', 'step_observations', ['step_id'])

    # ============================================================================
    # inspection attempts; (application_id, is_second) is unique
    # ============================================================================
    op.create_table(
        'inspections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('is_second', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('global_observations', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id', 'is_second', name='uq_inspections_application_kind'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inspections_application_id', 'inspections', ['application_id'])

    op.create_table(
        'inspection_step_results',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inspection_id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=True),  # NULL = Unset
        sa.Column('observations', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['inspection_id'], ['inspections.id'], ),
        sa.ForeignKeyConstraint(['step_id'], ['inspection_steps.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inspection_id', 'step_id', name='uq_step_results_inspection_step'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inspection_step_results_inspection_id', 'inspection_step_results', ['inspection_id'])
    op.create_index('ix_inspection_step_results_step_id', 'inspection_step_results', ['step_id'])

    op.create_table(
        'inspection_observation_checks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inspection_id', sa.Integer(), nullable=False),
        sa.Column('step_id', sa.Integer(), nullable=False),
        sa.Column('observation_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['inspection_id'], ['inspections.id'], ),
        sa.ForeignKeyConstraint(['step_id'], ['inspection_steps.id'], ),
        sa.ForeignKeyConstraint(['observation_id'], ['step_observations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inspection_id', 'observation_id', name='uq_observation_checks_inspection_obs'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inspection_observation_checks_inspection_id', 'inspection_observation_checks', ['inspection_id'])
    op.create_index('ix_inspection_observation_checks_step_id', 'inspection_observation_checks', ['step_id'])

    # ============================================================================
    # audit_events: append-only
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workshop_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=True),
        sa.Column('sticker_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['workshop_id'], ['workshops.id'], ),
        sa.ForeignKeyConstraint(['application_id'], ['applications.id'], ),
        sa.ForeignKeyConstraint(['sticker_id'], ['stickers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_workshop_id', 'audit_events', ['workshop_id'])
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_entity_type', 'audit_events', ['entity_type'])
    op.create_index('ix_audit_events_entity_id', 'audit_events', ['entity_id'])
    op.create_index('ix_audit_events_application_id', 'audit_events', ['application_id'])
    op.create_index('ix_audit_events_sticker_id', 'audit_events', ['sticker_id'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])
    op.create_index('ix_audit_events_workshop_occurred', 'audit_events', ['workshop_id', 'occurred_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('audit_events')
    op.drop_table('inspection_observation_checks')
    op.drop_table('inspection_step_results')
    op.drop_table('inspections')
    op.drop_table('step_observations')
    op.drop_table('inspection_steps')
    op.drop_table('stickers')
    op.drop_table('sticker_orders')
    op.drop_table('applications')
    op.drop_table('vehicles')
    op.drop_table('workshops')
