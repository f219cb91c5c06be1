"""initial schema: users, instances, locations, teams, blocks and credits

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e6f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # Databases built with db.create_all() already have everything
    if 'users' in set(insp.get_table_names()):
        return

    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('free_credits', sa.Integer(), nullable=False),
        sa.Column('paid_credits', sa.Integer(), nullable=False),
        sa.Column('monthly_credit_limit', sa.Integer(), nullable=False),
        sa.Column('is_educator', sa.Boolean(), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('free_credits >= 0', name='ck_users_free_credits_non_negative'),
        sa.CheckConstraint('paid_credits >= 0', name='ck_users_paid_credits_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'markers',
        sa.Column('code', sa.String(length=8), nullable=False),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('code'),
    )

    op.create_table(
        'instances',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_template', sa.Boolean(), nullable=False),
        sa.Column('game_structure', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_instances_user_id', 'instances', ['user_id'])

    op.create_table(
        'instance_settings',
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('must_check_out', sa.Boolean(), nullable=False),
        sa.Column('enable_points', sa.Boolean(), nullable=False),
        sa.Column('enable_bonus_points', sa.Boolean(), nullable=False),
        sa.Column('show_leaderboard', sa.Boolean(), nullable=False),
        sa.Column('show_team_count', sa.Boolean(), nullable=False),
        sa.Column('completion_bonus', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.PrimaryKeyConstraint('instance_id'),
    )

    op.create_table(
        'locations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('marker_id', sa.String(length=8), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('total_visits', sa.Integer(), nullable=False),
        sa.Column('current_count', sa.Integer(), nullable=False),
        sa.Column('avg_duration', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.ForeignKeyConstraint(['marker_id'], ['markers.code']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_locations_instance_id', 'locations', ['instance_id'])
    op.create_index('ix_locations_marker_id', 'locations', ['marker_id'])

    op.create_table(
        'teams',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('has_started', sa.Boolean(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('must_check_out', sa.String(length=36), nullable=False),
        sa.Column('skipped_group_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_teams_code', 'teams', ['code'], unique=True)
    op.create_index('ix_teams_instance_id', 'teams', ['instance_id'])

    op.create_table(
        'check_ins',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('team_code', sa.String(length=16), nullable=False),
        sa.Column('location_id', sa.String(length=36), nullable=False),
        sa.Column('time_in', sa.DateTime(), nullable=False),
        sa.Column('time_out', sa.DateTime(), nullable=True),
        sa.Column('must_check_out', sa.Boolean(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('blocks_completed', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['instance_id'], ['instances.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_code', 'location_id', name='uq_check_ins_team_location'),
    )
    op.create_index('ix_check_ins_instance_id', 'check_ins', ['instance_id'])
    op.create_index('ix_check_ins_team_code', 'check_ins', ['team_code'])
    op.create_index('ix_check_ins_location_id', 'check_ins', ['location_id'])

    op.create_table(
        'blocks',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=36), nullable=False),
        sa.Column('context', sa.String(length=32), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('ordering', sa.Integer(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('validation_required', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_blocks_owner_id', 'blocks', ['owner_id'])

    op.create_table(
        'block_states',
        sa.Column('block_id', sa.String(length=36), nullable=False),
        sa.Column('team_code', sa.String(length=16), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('is_complete', sa.Boolean(), nullable=False),
        sa.Column('points_awarded', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('block_id', 'team_code'),
    )

    op.create_table(
        'credit_purchases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('credits', sa.Integer(), nullable=False),
        sa.Column('amount_paid', sa.Integer(), nullable=False),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_payment_id', sa.String(length=255), nullable=True),
        sa.Column('receipt_url', sa.String(length=512), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_session_id'),
    )
    op.create_index('ix_credit_purchases_user_id', 'credit_purchases', ['user_id'])

    op.create_table(
        'credit_adjustments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('credits', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('credit_purchase_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_credit_adjustments_user_id', 'credit_adjustments', ['user_id'])
    op.create_index('ix_credit_adjustments_created_at', 'credit_adjustments', ['created_at'])

    op.create_table(
        'team_start_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('team_id', sa.String(length=36), nullable=False),
        sa.Column('instance_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_team_start_logs_user_id', 'team_start_logs', ['user_id'])
    op.create_index('ix_team_start_logs_created_at', 'team_start_logs', ['created_at'])


def downgrade():
    # Children before parents
    for table in ('team_start_logs', 'credit_adjustments', 'credit_purchases', 'block_states', 'blocks',
                  'check_ins', 'teams', 'locations', 'instance_settings', 'instances', 'markers', 'users'):
        op.drop_table(table)
