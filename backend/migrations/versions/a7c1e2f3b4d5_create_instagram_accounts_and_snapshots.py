"""create instagram accounts and daily snapshots

Revision ID: a7c1e2f3b4d5
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c1e2f3b4d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'instagram_accounts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('owner_user_id', sa.String(255), nullable=False),
        sa.Column('ig_user_id', sa.String(100), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('account_type', sa.String(50), nullable=True),
        sa.Column('profile_picture_url', sa.String(1000), nullable=True),
        sa.Column('biography', sa.Text(), nullable=True),
        sa.Column('followers_count', sa.Integer(), nullable=True),
        sa.Column('follows_count', sa.Integer(), nullable=True),
        sa.Column('media_count', sa.Integer(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('connected_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('owner_user_id', 'ig_user_id', name='uix_instagram_accounts_owner_ig_user'),
    )
    op.create_index(
        'ix_instagram_accounts_owner_user_id', 'instagram_accounts', ['owner_user_id']
    )

    op.create_table(
        'account_snapshots',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('account_id', sa.String(36), nullable=False),
        sa.Column('snapshot_date', sa.Date(), nullable=False),
        sa.Column('followers_count', sa.Integer(), nullable=True),
        sa.Column('follows_count', sa.Integer(), nullable=True),
        sa.Column('media_count', sa.Integer(), nullable=True),
        sa.Column('avg_engagement_rate', sa.Float(), nullable=True),
        sa.Column('avg_reach', sa.Float(), nullable=True),
        sa.Column('total_likes', sa.Integer(), nullable=True),
        sa.Column('total_comments', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['instagram_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'snapshot_date', name='uix_account_snapshots_account_date'),
    )
    op.create_index(
        'ix_account_snapshots_account_id', 'account_snapshots', ['account_id']
    )


def downgrade() -> None:
    op.drop_index('ix_account_snapshots_account_id', table_name='account_snapshots')
    op.drop_table('account_snapshots')
    op.drop_index('ix_instagram_accounts_owner_user_id', table_name='instagram_accounts')
    op.drop_table('instagram_accounts')
