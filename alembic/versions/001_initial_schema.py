"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Saved menu snapshots, one owner per row
    op.create_table(
        'menu_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('restaurant_name', sa.Text(), nullable=True),
        sa.Column('menu_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('image_urls', postgresql.ARRAY(sa.Text()), server_default=sa.text("'{}'"), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'menu_sessions_user_created_idx',
        'menu_sessions',
        ['user_id', sa.text('created_at DESC')],
    )


def downgrade() -> None:
    op.drop_index('menu_sessions_user_created_idx', table_name='menu_sessions')
    op.drop_table('menu_sessions')
