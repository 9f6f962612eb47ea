"""initial_chat_roll_schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:41.208513
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '3f1c9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(256), nullable=True),
        sa.Column("api_key_hash", sa.String(128), nullable=True),
        sa.Column("password_hash", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("role", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_table(
        "actors",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(32), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "actor_resources",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("actor_id", sa.String(32), sa.ForeignKey("actors.id"), nullable=False),
        sa.Column("title", sa.String(128), nullable=False),
        sa.Column("tag", sa.String(64), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("max_value", sa.Integer(), nullable=False),
        sa.Column("icon", sa.String(256), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
    )
    op.create_index("ix_resource_actor", "actor_resources", ["actor_id"])
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("room_id", sa.String(64), nullable=False),
        sa.Column("author_id", sa.String(32), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("actor_id", sa.String(32), sa.ForeignKey("actors.id"), nullable=True),
        sa.Column("flavor", sa.Text(), nullable=False),
        sa.Column("formula", sa.String(64), nullable=True),
        sa.Column("rolls_json", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("flags_json", sa.Text(), nullable=False),
        sa.Column("ownership_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_message_room", "chat_messages", ["room_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_message_room", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_resource_actor", table_name="actor_resources")
    op.drop_table("actor_resources")
    op.drop_table("actors")
    op.drop_table("users")
