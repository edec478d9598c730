"""create hospitality engine tables

Revision ID: c7d8e9f0a1b2
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = 'c7d8e9f0a1b2'
down_revision = None
branch_labels = None
depends_on = None

funnel_stage = sa.Enum('VISITOR', 'INTERESTED', 'ENGAGED', 'SUBSCRIBER', 'ADVOCATE', name='funnelstage')
target_audience = sa.Enum('ALL', 'VISITOR', 'SUBSCRIBER', 'STAGES', name='targetaudience')
action_type = sa.Enum('POPUP', 'NOTIFICATION', 'PERSONA_MESSAGE', 'REDIRECT', name='actiontype')
action_outcome = sa.Enum('PENDING', 'SHOWN', 'DISMISSED', 'CLICKED', 'CONVERTED', 'EXPIRED', name='actionoutcome')


def upgrade() -> None:
    op.create_table(
        'rule_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('rule_categories.id'), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_rule_categories_slug', 'rule_categories', ['slug'], unique=True)
    op.create_index('ix_rule_categories_parent_id', 'rule_categories', ['parent_id'])

    op.create_table(
        'hospitality_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(150), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('rule_categories.id'), nullable=True),
        sa.Column('rule_number', sa.String(20), nullable=True),
        sa.Column('target_audience', target_audience, nullable=False),
        sa.Column('target_funnel_stages', sa.JSON(), nullable=True),
        sa.Column('trigger_conditions', sa.JSON(), nullable=False),
        sa.Column('action_type', action_type, nullable=False),
        sa.Column('action_config', sa.JSON(), nullable=False),
        sa.Column('message_template', sa.Text(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('cooldown_seconds', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('max_per_session', sa.Integer(), nullable=True),
        sa.Column('max_per_day', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_hospitality_rules_slug', 'hospitality_rules', ['slug'], unique=True)
    op.create_index('ix_hospitality_rules_category_id', 'hospitality_rules', ['category_id'])
    op.create_index('ix_hospitality_rules_rule_number', 'hospitality_rules', ['rule_number'])
    op.create_index('ix_hospitality_rules_active_priority', 'hospitality_rules', ['is_active', 'priority'])

    op.create_table(
        'engagement_states',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_time_on_site_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('session_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('current_session_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('engagement_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('funnel_stage', funnel_stage, nullable=False),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_page_url', sa.String(500), nullable=True),
        sa.Column('last_persona_id', sa.String(100), nullable=True),
        sa.Column('popups_shown_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('popups_dismissed_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_popup_shown_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_popup_type', sa.String(100), nullable=True),
        sa.Column('global_cooldown_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('engagement_score >= 0 AND engagement_score <= 100', name='ck_engagement_states_score_range'),
        sa.CheckConstraint('(account_id IS NULL) <> (session_id IS NULL)', name='ck_engagement_states_has_identity'),
    )
    op.create_index('ix_engagement_states_account_id', 'engagement_states', ['account_id'], unique=True)
    op.create_index('ix_engagement_states_session_id', 'engagement_states', ['session_id'], unique=True)
    op.create_index('ix_engagement_states_funnel_stage', 'engagement_states', ['funnel_stage'])
    op.create_index('ix_engagement_states_last_activity_at', 'engagement_states', ['last_activity_at'])

    op.create_table(
        'engagement_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('page_url', sa.String(500), nullable=True),
        sa.Column('metric_value', sa.Float(), nullable=True),
        sa.Column('persona_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_engagement_events_account_created', 'engagement_events', ['account_id', 'created_at'])
    op.create_index('ix_engagement_events_session_created', 'engagement_events', ['session_id', 'created_at'])
    op.create_index('ix_engagement_events_type_created', 'engagement_events', ['event_type', 'created_at'])

    op.create_table(
        'hospitality_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('rule_id', sa.Integer(), sa.ForeignKey('hospitality_rules.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action_type', action_type, nullable=False),
        sa.Column('action_subtype', sa.String(100), nullable=True),
        sa.Column('persona_id', sa.String(100), nullable=True),
        sa.Column('action_config', sa.JSON(), nullable=False),
        sa.Column('trigger_event_id', sa.Integer(), sa.ForeignKey('engagement_events.id', ondelete='SET NULL'), nullable=True),
        sa.Column('page_url', sa.String(500), nullable=True),
        sa.Column('outcome', action_outcome, nullable=False),
        sa.Column('outcome_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('trigger_event_id', name='uq_hospitality_actions_trigger_event'),
    )
    op.create_index('ix_hospitality_actions_rule_id', 'hospitality_actions', ['rule_id'])
    op.create_index('ix_hospitality_actions_account_outcome', 'hospitality_actions', ['account_id', 'outcome'])
    op.create_index('ix_hospitality_actions_session_outcome', 'hospitality_actions', ['session_id', 'outcome'])
    op.create_index('ix_hospitality_actions_outcome_created', 'hospitality_actions', ['outcome', 'created_at'])

    op.create_table(
        'rule_cooldowns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('rule_id', sa.Integer(), sa.ForeignKey('hospitality_rules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('times_triggered_session', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('times_triggered_today', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cooldown_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_daily_reset', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('account_id', 'rule_id', name='uq_rule_cooldowns_account_rule'),
        sa.UniqueConstraint('session_id', 'rule_id', name='uq_rule_cooldowns_session_rule'),
    )
    op.create_index('ix_rule_cooldowns_account_id', 'rule_cooldowns', ['account_id'])
    op.create_index('ix_rule_cooldowns_session_id', 'rule_cooldowns', ['session_id'])
    op.create_index('ix_rule_cooldowns_rule_id', 'rule_cooldowns', ['rule_id'])
    op.create_index('ix_rule_cooldowns_cooldown_until', 'rule_cooldowns', ['cooldown_until'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor', sa.String(255), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('target_type', sa.String(50), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=True),
        sa.Column('meta_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('rule_cooldowns')
    op.drop_table('hospitality_actions')
    op.drop_table('engagement_events')
    op.drop_table('engagement_states')
    op.drop_table('hospitality_rules')
    op.drop_table('rule_categories')
    for enum_type in (action_outcome, action_type, target_audience, funnel_stage):
        enum_type.drop(op.get_bind(), checkfirst=True)
