"""Subscription row versions and the persisted notification inbox.

Revision ID: 002
Revises: 001
Create Date: 2024-06-01

Adds:
- subscriptions.version for compare-and-swap settlement writes
- notifications table with a per-day uniqueness key for daily warnings
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'subscriptions',
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'notifications',
        sa.Column('notification_id', sa.String(32), primary_key=True),
        sa.Column('recipient_id', sa.String(32), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False, server_default=''),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('link', sa.String(200), nullable=False, server_default=''),
        sa.Column('read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('dedupe_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            'recipient_id', 'title', 'category', 'dedupe_date',
            name='uq_notification_daily',
        ),
    )
    op.create_index('ix_notifications_recipient_id', 'notifications', ['recipient_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_notifications_created_at', table_name='notifications')
    op.drop_index('ix_notifications_recipient_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_column('subscriptions', 'version')
