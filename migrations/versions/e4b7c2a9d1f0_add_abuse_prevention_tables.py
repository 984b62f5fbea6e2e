"""add abuse prevention tables

Revision ID: e4b7c2a9d1f0
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e4b7c2a9d1f0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'rate_limit_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identifier', sa.String(length=320), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('reset_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('identifier', 'action', name='uq_rate_limit_records_identifier_action')
    )
    with op.batch_alter_table('rate_limit_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rate_limit_records_identifier'), ['identifier'], unique=False)
        batch_op.create_index(batch_op.f('ix_rate_limit_records_reset_at'), ['reset_at'], unique=False)

    op.create_table(
        'account_lockouts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('identifier', sa.String(length=320), nullable=False),
        sa.Column('locked_until', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('account_lockouts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_account_lockouts_identifier'), ['identifier'], unique=True)
        batch_op.create_index(batch_op.f('ix_account_lockouts_locked_until'), ['locked_until'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event', sa.String(length=80), nullable=False),
        sa.Column('severity', sa.String(length=16), nullable=False),
        sa.Column('identifier', sa.String(length=320), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.String(length=255), nullable=True),
        sa.Column('details_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_event'), ['event'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_severity'), ['severity'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_timestamp'), ['timestamp'], unique=False)


def downgrade():
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_audit_logs_timestamp'))
        batch_op.drop_index(batch_op.f('ix_audit_logs_severity'))
        batch_op.drop_index(batch_op.f('ix_audit_logs_event'))

    op.drop_table('audit_logs')

    with op.batch_alter_table('account_lockouts', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_account_lockouts_locked_until'))
        batch_op.drop_index(batch_op.f('ix_account_lockouts_identifier'))

    op.drop_table('account_lockouts')

    with op.batch_alter_table('rate_limit_records', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_rate_limit_records_reset_at'))
        batch_op.drop_index(batch_op.f('ix_rate_limit_records_identifier'))

    op.drop_table('rate_limit_records')
