"""SQLAlchemy ORM models for ezd6-engine."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True, unique=True)
    api_key_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    role: Mapped[str] = mapped_column(String(16), default="user")  # "user", "admin"
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    actors: Mapped[list[Actor]] = relationship(back_populates="owner")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __str__(self) -> str:
        return f"{self.username} ({self.id[:8]})"


class Actor(Base):
    """A character that speaks in chat and owns spendable resource pools."""

    __tablename__ = "actors"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    owner_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("users.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    owner: Mapped[User | None] = relationship(back_populates="actors")
    resources: Mapped[list[ActorResource]] = relationship(
        back_populates="actor",
        cascade="all, delete-orphan",
        order_by="ActorResource.sort_order",
    )

    def __str__(self) -> str:
        return self.name


class ActorResource(Base):
    """A spendable pool (karma, stress, health, ...) on an actor sheet."""

    __tablename__ = "actor_resources"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    actor_id: Mapped[str] = mapped_column(String(32), ForeignKey("actors.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False, default="Resource")
    tag: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icon: Mapped[str | None] = mapped_column(String(256), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    actor: Mapped[Actor] = relationship(back_populates="resources")

    def __str__(self) -> str:
        return f"{self.title} {self.value}/{self.max_value}"

    __table_args__ = (
        Index("ix_resource_actor", "actor_id"),
    )


class ChatMessage(Base):
    """A chat transcript entry. Roll messages carry their dice and roll state."""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String(64), nullable=False, default="world")
    author_id: Mapped[str] = mapped_column(String(32), ForeignKey("users.id"), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(
        String(32), ForeignKey("actors.id"), nullable=True
    )
    flavor: Mapped[str] = mapped_column(Text, nullable=False, default="")
    formula: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rolls_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    flags_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    ownership_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    author: Mapped[User] = relationship(foreign_keys=[author_id])
    actor: Mapped[Actor | None] = relationship(foreign_keys=[actor_id])

    @property
    def flags(self) -> dict:
        return json.loads(self.flags_json or "{}")

    @property
    def ownership(self) -> dict:
        return json.loads(self.ownership_json or "{}")

    @property
    def dice(self) -> list[int]:
        return json.loads(self.rolls_json) if self.rolls_json else []

    def __str__(self) -> str:
        return f"{self.flavor or 'message'} ({self.id[:8]})"

    __table_args__ = (
        Index("ix_message_room", "room_id", "created_at"),
    )
