"""init citizen chat schema

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20260301_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTOR_ROLES = ("admin", "manager", "secretary_admin", "agent", "user", "system")
PRESENCE_STATUSES = ("online", "break", "offline")
CONVERSATION_STATES = ("waiting", "active", "closed")
SENDER_ROLES = ("user", "agent", "system")
MESSAGE_TYPES = ("text", "file", "system")
MESSAGE_STATUSES = ("sent", "delivered", "read")


def upgrade() -> None:
    bind = op.get_bind()
    sa.Enum(*ACTOR_ROLES, name="actor_role").create(bind, checkfirst=True)
    sa.Enum(*PRESENCE_STATUSES, name="presence_status").create(bind, checkfirst=True)
    sa.Enum(*CONVERSATION_STATES, name="conversation_state").create(bind, checkfirst=True)
    sa.Enum(*SENDER_ROLES, name="sender_role").create(bind, checkfirst=True)
    sa.Enum(*MESSAGE_TYPES, name="message_type").create(bind, checkfirst=True)
    sa.Enum(*MESSAGE_STATUSES, name="message_status").create(bind, checkfirst=True)

    op.create_table(
        "agents",
        sa.Column("agent_id", sa.String(length=120), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=False),
        sa.Column(
            "role",
            sa.Enum(*ACTOR_ROLES, name="actor_role", create_type=False),
            nullable=False,
            server_default=sa.text("'agent'"),
        ),
        sa.Column("department_id", sa.String(length=120), nullable=True),
        sa.Column("secretary_id", sa.String(length=120), nullable=True),
        sa.Column(
            "presence",
            sa.Enum(*PRESENCE_STATUSES, name="presence_status", create_type=False),
            nullable=False,
            server_default=sa.text("'offline'"),
        ),
        sa.Column(
            "max_concurrent_chats", sa.Integer(), nullable=False, server_default=sa.text("5")
        ),
        sa.Column("presence_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("agent_id"),
    )
    op.create_index("ix_agents_department_id", "agents", ["department_id"], unique=False)

    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("citizen_display_name", sa.String(length=200), nullable=False),
        sa.Column("citizen_tax_id", sa.String(length=32), nullable=True),
        sa.Column("citizen_session_token", sa.String(length=120), nullable=False),
        sa.Column(
            "state",
            sa.Enum(*CONVERSATION_STATES, name="conversation_state", create_type=False),
            nullable=False,
            server_default=sa.text("'waiting'"),
        ),
        sa.Column("department_id", sa.String(length=120), nullable=True),
        sa.Column("service_id", sa.String(length=120), nullable=True),
        sa.Column("agent_id", sa.String(length=120), nullable=True),
        sa.Column("is_bot", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "inactivity_warnings", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("waiting_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["agent_id"], ["agents.agent_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_conversations_citizen_session_token",
        "conversations",
        ["citizen_session_token"],
        unique=False,
    )
    op.create_index(
        "ix_conversations_department_id", "conversations", ["department_id"], unique=False
    )
    op.create_index("ix_conversations_agent_id", "conversations", ["agent_id"], unique=False)

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("conversation_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(length=120), nullable=False),
        sa.Column("sender_name", sa.String(length=200), nullable=False),
        sa.Column(
            "sender_role",
            sa.Enum(*SENDER_ROLES, name="sender_role", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "type",
            sa.Enum(*MESSAGE_TYPES, name="message_type", create_type=False),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*MESSAGE_STATUSES, name="message_status", create_type=False),
            nullable=False,
            server_default=sa.text("'sent'"),
        ),
        sa.Column("file_url", sa.String(length=500), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "sequence", name="uq_message_sequence"),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_conversations_agent_id", table_name="conversations")
    op.drop_index("ix_conversations_department_id", table_name="conversations")
    op.drop_index("ix_conversations_citizen_session_token", table_name="conversations")
    op.drop_table("conversations")

    op.drop_index("ix_agents_department_id", table_name="agents")
    op.drop_table("agents")

    bind = op.get_bind()
    sa.Enum(name="message_status").drop(bind, checkfirst=True)
    sa.Enum(name="message_type").drop(bind, checkfirst=True)
    sa.Enum(name="sender_role").drop(bind, checkfirst=True)
    sa.Enum(name="conversation_state").drop(bind, checkfirst=True)
    sa.Enum(name="presence_status").drop(bind, checkfirst=True)
    sa.Enum(name="actor_role").drop(bind, checkfirst=True)
