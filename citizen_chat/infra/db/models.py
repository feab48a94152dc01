from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from citizen_chat.domain.enums import (
    ActorRole,
    ConversationState,
    MessageStatus,
    MessageType,
    PresenceStatus,
    SenderRole,
)


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AgentRecord(Base, TimestampMixin):
    __tablename__ = "agents"

    agent_id: Mapped[str] = mapped_column(String(120), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[ActorRole] = mapped_column(
        _enum_column(ActorRole, "actor_role"), nullable=False, default=ActorRole.AGENT
    )
    department_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    secretary_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    presence: Mapped[PresenceStatus] = mapped_column(
        _enum_column(PresenceStatus, "presence_status"),
        nullable=False,
        default=PresenceStatus.OFFLINE,
    )
    max_concurrent_chats: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    presence_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    conversations: Mapped[list["ConversationRecord"]] = relationship(back_populates="agent")


class ConversationRecord(Base, TimestampMixin):
    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    citizen_display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    citizen_tax_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    citizen_session_token: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    state: Mapped[ConversationState] = mapped_column(
        _enum_column(ConversationState, "conversation_state"),
        nullable=False,
        default=ConversationState.WAITING,
    )
    department_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    service_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    agent_id: Mapped[str | None] = mapped_column(
        String(120), ForeignKey("agents.agent_id", ondelete="SET NULL"), nullable=True, index=True
    )
    is_bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    inactivity_warnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    waiting_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    agent: Mapped[AgentRecord | None] = relationship(back_populates="conversations")
    messages: Mapped[list["MessageRecord"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )


class MessageRecord(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_message_sequence"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(120), nullable=False)
    sender_name: Mapped[str] = mapped_column(String(200), nullable=False)
    sender_role: Mapped[SenderRole] = mapped_column(
        _enum_column(SenderRole, "sender_role"), nullable=False
    )
    type: Mapped[MessageType] = mapped_column(
        _enum_column(MessageType, "message_type"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[MessageStatus] = mapped_column(
        _enum_column(MessageStatus, "message_status"),
        nullable=False,
        default=MessageStatus.SENT,
    )
    file_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    conversation: Mapped[ConversationRecord] = relationship(back_populates="messages")
