"""create users, tiktok_accounts and metric_snapshots

Revision ID: c1d2e3f4a5b6
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c1d2e3f4a5b6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(as_uuid=False), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Sealed OAuth tokens, one row per TikTok open_id
    op.create_table(
        'tiktok_accounts',
        sa.Column('id', sa.UUID(as_uuid=False), nullable=False),
        sa.Column('user_id', sa.UUID(as_uuid=False), nullable=False),
        sa.Column('tiktok_user_id', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('connected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('tiktok_user_id'),
    )
    op.create_index('ix_tiktok_accounts_user_id', 'tiktok_accounts', ['user_id'])

    # One snapshot per account per UTC day
    op.create_table(
        'metric_snapshots',
        sa.Column('id', sa.UUID(as_uuid=False), nullable=False),
        sa.Column('account_id', sa.UUID(as_uuid=False), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('follower_count', sa.Integer(), nullable=True, default=0),
        sa.Column('following_count', sa.Integer(), nullable=True, default=0),
        sa.Column('total_likes', sa.BigInteger(), nullable=True, default=0),
        sa.Column('total_views', sa.BigInteger(), nullable=True, default=0),
        sa.Column('total_comments', sa.BigInteger(), nullable=True, default=0),
        sa.Column('total_shares', sa.BigInteger(), nullable=True, default=0),
        sa.Column('video_count', sa.Integer(), nullable=True, default=0),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['tiktok_accounts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('account_id', 'snapshot_date', name='uq_metric_snapshots_account_day'),
    )
    op.create_index('ix_metric_snapshots_account_id', 'metric_snapshots', ['account_id'])


def downgrade() -> None:
    op.drop_index('ix_metric_snapshots_account_id', table_name='metric_snapshots')
    op.drop_table('metric_snapshots')
    op.drop_index('ix_tiktok_accounts_user_id', table_name='tiktok_accounts')
    op.drop_table('tiktok_accounts')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
