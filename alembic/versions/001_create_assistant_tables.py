"""Create ai_pending_actions and admin_access_tokens tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "admin_access_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("token_prefix", sa.String(16), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime),
        sa.Column("last_used_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_admin_access_tokens_user_id", "admin_access_tokens", ["user_id"])
    op.create_index("ix_admin_access_tokens_token_prefix", "admin_access_tokens", ["token_prefix"])

    op.create_table(
        "ai_pending_actions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("tool_name", sa.String(128), nullable=False),
        sa.Column("arguments", sa.JSON, nullable=False),
        sa.Column("preview", sa.JSON),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("resolved_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ai_pending_actions_actor_id", "ai_pending_actions", ["actor_id"])


def downgrade() -> None:
    op.drop_index("ix_ai_pending_actions_actor_id", table_name="ai_pending_actions")
    op.drop_table("ai_pending_actions")
    op.drop_index("ix_admin_access_tokens_token_prefix", table_name="admin_access_tokens")
    op.drop_index("ix_admin_access_tokens_user_id", table_name="admin_access_tokens")
    op.drop_table("admin_access_tokens")
