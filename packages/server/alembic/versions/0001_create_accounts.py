"""Create accounts table

Revision ID: 0001_create_accounts
Revises:
Create Date: 2026-10-16 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_create_accounts'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('google_id', sa.String(), nullable=True),
        sa.Column('provider', sa.String(), server_default='local', nullable=False),
        sa.Column('email_verified', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('profile_picture', sa.String(), nullable=True),
        sa.Column('reset_otp', sa.String(length=6), nullable=True),
        sa.Column('otp_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('password_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        # The reset challenge columns are written and cleared together.
        sa.CheckConstraint(
            "(reset_otp IS NULL AND otp_created_at IS NULL AND otp_expires_at IS NULL)"
            " OR (reset_otp IS NOT NULL AND otp_created_at IS NOT NULL AND otp_expires_at IS NOT NULL)",
            name='ck_accounts_reset_challenge_complete',
        ),
        sa.CheckConstraint("provider IN ('local', 'google')", name='ck_accounts_provider'),
    )
    op.create_index(op.f('ix_accounts_email'), 'accounts', ['email'], unique=True)
    op.create_index(op.f('ix_accounts_google_id'), 'accounts', ['google_id'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_accounts_google_id'), table_name='accounts')
    op.drop_index(op.f('ix_accounts_email'), table_name='accounts')
    op.drop_table('accounts')
