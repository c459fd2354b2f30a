"""create alerts and decisions

Revision ID: 4f1c2a9e7b3d
Revises:
Create Date: 2026-10-19 09:12:41.508113

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4f1c2a9e7b3d'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table('alerts',
    sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
    sa.Column('uuid', sa.String(length=64), nullable=True),
    sa.Column('scenario', sa.String(length=255), nullable=False),
    sa.Column('scenario_version', sa.String(length=64), nullable=True),
    sa.Column('scenario_hash', sa.String(length=128), nullable=True),
    sa.Column('message', sa.Text(), nullable=False),
    sa.Column('capacity', sa.Integer(), nullable=False),
    sa.Column('leakspeed', sa.String(length=64), nullable=False),
    sa.Column('simulated', sa.Boolean(), nullable=False),
    sa.Column('remediation', sa.Boolean(), nullable=False),
    sa.Column('events_count', sa.Integer(), nullable=False),
    sa.Column('machine_id', sa.String(length=255), nullable=False),
    sa.Column('source', sa.JSON(), nullable=False),
    sa.Column('labels', sa.JSON(), nullable=True),
    sa.Column('meta', sa.JSON(), nullable=False),
    sa.Column('events', sa.JSON(), nullable=False),
    sa.Column('crowdsec_created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('stop_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_alerts_scenario', 'alerts', ['scenario'], unique=False)
    op.create_index('ix_alerts_simulated', 'alerts', ['simulated'], unique=False)
    op.create_index('ix_alerts_start_at', 'alerts', ['start_at'], unique=False)
    op.create_index('ix_alerts_crowdsec_created_at', 'alerts', ['crowdsec_created_at'], unique=False)
    op.create_index(op.f('ix_alerts_created_at'), 'alerts', ['created_at'], unique=False)
    op.create_table('decisions',
    sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
    sa.Column('alert_id', sa.Integer(), nullable=False),
    sa.Column('origin', sa.String(length=64), nullable=False),
    sa.Column('type', sa.String(length=32), nullable=False),
    sa.Column('scope', sa.String(length=32), nullable=False),
    sa.Column('value', sa.String(length=255), nullable=False),
    sa.Column('duration', sa.String(length=64), nullable=False),
    sa.Column('scenario', sa.String(length=255), nullable=False),
    sa.Column('simulated', sa.Boolean(), nullable=False),
    sa.Column('expiration', sa.DateTime(timezone=True), nullable=False),
    sa.Column('crowdsec_created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['alert_id'], ['alerts.id'], ondelete='CASCADE', onupdate='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_decisions_alert_id', 'decisions', ['alert_id'], unique=False)
    op.create_index('ix_decisions_type', 'decisions', ['type'], unique=False)
    op.create_index('ix_decisions_scope', 'decisions', ['scope'], unique=False)
    op.create_index('ix_decisions_value', 'decisions', ['value'], unique=False)
    op.create_index('ix_decisions_simulated', 'decisions', ['simulated'], unique=False)
    op.create_index('ix_decisions_expiration', 'decisions', ['expiration'], unique=False)
    op.create_index(op.f('ix_decisions_created_at'), 'decisions', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_decisions_created_at'), table_name='decisions')
    op.drop_index('ix_decisions_expiration', table_name='decisions')
    op.drop_index('ix_decisions_simulated', table_name='decisions')
    op.drop_index('ix_decisions_value', table_name='decisions')
    op.drop_index('ix_decisions_scope', table_name='decisions')
    op.drop_index('ix_decisions_type', table_name='decisions')
    op.drop_index('ix_decisions_alert_id', table_name='decisions')
    op.drop_table('decisions')
    op.drop_index(op.f('ix_alerts_created_at'), table_name='alerts')
    op.drop_index('ix_alerts_crowdsec_created_at', table_name='alerts')
    op.drop_index('ix_alerts_start_at', table_name='alerts')
    op.drop_index('ix_alerts_simulated', table_name='alerts')
    op.drop_index('ix_alerts_scenario', table_name='alerts')
    op.drop_table('alerts')
