"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create users table first (base table for all relationships)
    op.create_table('users',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('phone', sa.String(), nullable=True),
                    sa.Column('name', sa.String(), nullable=True),
                    sa.Column('bio', sa.Text(), nullable=True),
                    sa.Column('is_premium', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.Column('updated_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('is_phone_verified', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('phone_verified_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('date_of_birth', sa.Date(), nullable=True),
                    sa.Column('is_age_verified', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('age_verified_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('digilocker_verified_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('digilocker_token', sa.Text(), nullable=True),
                    sa.Column('digilocker_token_iv', sa.String(), nullable=True),
                    sa.Column('digilocker_token_tag', sa.String(), nullable=True),
                    sa.Column('digilocker_token_key', sa.Text(), nullable=True),
                    sa.Column('video_selfie_verified_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('video_selfie_data', sa.Text(), nullable=True),
                    sa.Column('verification_level', sa.Integer(), nullable=False,
                              server_default='0'),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_phone'), 'users', ['phone'], unique=True)

    op.create_table('otp_requests',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('phone', sa.String(), nullable=False),
                    sa.Column('code', sa.String(length=6), nullable=False),
                    sa.Column('attempt_count', sa.Integer(), nullable=False,
                              server_default='0'),
                    sa.Column('max_attempts', sa.Integer(), nullable=False,
                              server_default='5'),
                    sa.Column('is_used', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
                    sa.Column('expires_at', sa.DateTime(
                        timezone=True), nullable=False),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_otp_requests_id'), 'otp_requests', ['id'], unique=False)
    op.create_index(op.f('ix_otp_requests_phone'),
                    'otp_requests', ['phone'], unique=False)

    op.create_table('auth_sessions',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('refresh_token_hash', sa.String(length=64), nullable=False),
                    sa.Column('device_info', sa.String(), nullable=True),
                    sa.Column('ip_address', sa.String(), nullable=True),
                    sa.Column('expires_at', sa.DateTime(
                        timezone=True), nullable=False),
                    sa.Column('is_revoked', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_auth_sessions_id'), 'auth_sessions', ['id'], unique=False)
    op.create_index(op.f('ix_auth_sessions_user_id'),
                    'auth_sessions', ['user_id'], unique=False)
    op.create_index(op.f('ix_auth_sessions_refresh_token_hash'),
                    'auth_sessions', ['refresh_token_hash'], unique=False)

    op.create_table('digilocker_states',
                    sa.Column('state', sa.String(length=64), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('expires_at', sa.DateTime(
                        timezone=True), nullable=False),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('state')
                    )
    op.create_index(op.f('ix_digilocker_states_user_id'),
                    'digilocker_states', ['user_id'], unique=False)

    op.create_table('consents',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('purpose_matching', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('purpose_marketing', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('purpose_analytics', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('purpose_third_party', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('consent_given_at', sa.DateTime(
                        timezone=True), nullable=False),
                    sa.Column('consent_withdrawn_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.Column('consent_version', sa.String(), nullable=False,
                              server_default='1.0'),
                    sa.Column('ip_address', sa.String(), nullable=True),
                    sa.Column('user_agent', sa.String(), nullable=True),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_consents_id'), 'consents', ['id'], unique=False)
    op.create_index(op.f('ix_consents_user_id'), 'consents', ['user_id'], unique=False)
    op.create_index('ix_consents_user_open', 'consents',
                    ['user_id', 'consent_withdrawn_at'], unique=False)

    op.create_table('audit_logs',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('event_type', sa.String(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=True),
                    sa.Column('entity_type', sa.String(), nullable=True),
                    sa.Column('entity_id', sa.String(), nullable=True),
                    sa.Column('action', sa.String(), nullable=True),
                    sa.Column('metadata', sa.JSON(), nullable=True),
                    sa.Column('ip_address', sa.String(), nullable=True),
                    sa.Column('user_agent', sa.String(), nullable=True),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_audit_logs_id'), 'audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_audit_logs_event_type'),
                    'audit_logs', ['event_type'], unique=False)
    op.create_index(op.f('ix_audit_logs_user_id'),
                    'audit_logs', ['user_id'], unique=False)

    op.create_table('daily_usage',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('action_type', sa.String(), nullable=False),
                    sa.Column('used', sa.Integer(), nullable=False, server_default='0'),
                    sa.Column('daily_limit', sa.Integer(), nullable=False),
                    sa.Column('reset_at', sa.DateTime(timezone=True), nullable=False),
                    sa.Column('updated_at', sa.DateTime(
                        timezone=True), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id'),
                    sa.UniqueConstraint('user_id', 'action_type',
                                        name='uq_daily_usage_user_action')
                    )
    op.create_index(op.f('ix_daily_usage_id'), 'daily_usage', ['id'], unique=False)
    op.create_index(op.f('ix_daily_usage_user_id'),
                    'daily_usage', ['user_id'], unique=False)

    op.create_table('analytics_events',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('event_name', sa.String(), nullable=False),
                    sa.Column('properties', sa.JSON(), nullable=True),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_analytics_events_id'),
                    'analytics_events', ['id'], unique=False)
    op.create_index(op.f('ix_analytics_events_user_id'),
                    'analytics_events', ['user_id'], unique=False)
    op.create_index(op.f('ix_analytics_events_event_name'),
                    'analytics_events', ['event_name'], unique=False)

    op.create_table('upsell_reminders',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('remind_at', sa.DateTime(timezone=True), nullable=False),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id'),
                    sa.UniqueConstraint('user_id')
                    )
    op.create_index(op.f('ix_upsell_reminders_id'),
                    'upsell_reminders', ['id'], unique=False)

    op.create_table('location_history',
                    sa.Column('id', sa.Integer(), nullable=False),
                    sa.Column('user_id', sa.Integer(), nullable=False),
                    sa.Column('latitude', sa.Float(), nullable=False),
                    sa.Column('longitude', sa.Float(), nullable=False),
                    sa.Column('accuracy', sa.Float(), nullable=True),
                    sa.Column('expires_at', sa.DateTime(
                        timezone=True), nullable=False),
                    sa.Column('is_expired', sa.Boolean(), nullable=False,
                              server_default=sa.false()),
                    sa.Column('created_at', sa.DateTime(timezone=True),
                              server_default=sa.text('now()'), nullable=True),
                    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_location_history_id'),
                    'location_history', ['id'], unique=False)
    op.create_index(op.f('ix_location_history_user_id'),
                    'location_history', ['user_id'], unique=False)
    op.create_index(op.f('ix_location_history_expires_at'),
                    'location_history', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_table('location_history')
    op.drop_table('upsell_reminders')
    op.drop_table('analytics_events')
    op.drop_table('daily_usage')
    op.drop_table('audit_logs')
    op.drop_table('consents')
    op.drop_table('digilocker_states')
    op.drop_table('auth_sessions')
    op.drop_table('otp_requests')
    op.drop_table('users')
