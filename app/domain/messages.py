"""Document store — narrow repository over chat messages, actors and users.

Every committed write is echoed on the lifecycle bus so connected clients can
re-read the document.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.domain import resources as resources_mod
from app.domain.registry import LifecycleEvent, LifecycleKind, MessageLifecycleBus
from app.models.db_models import Actor, ChatMessage, User

logger = logging.getLogger("ezd6.messages")


class MessageNotFound(ValueError):
    """Raised when a chat message does not exist."""


class DocumentStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: MessageLifecycleBus,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus

    # --- reads ---

    async def get(self, message_id: str) -> ChatMessage | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .options(
                    selectinload(ChatMessage.author),
                    selectinload(ChatMessage.actor).selectinload(Actor.resources),
                )
                .where(ChatMessage.id == message_id)
            )
            return result.scalar_one_or_none()

    async def require(self, message_id: str) -> ChatMessage:
        message = await self.get(message_id)
        if message is None:
            raise MessageNotFound(f"Message {message_id} not found")
        return message

    async def last_in_room(self, room_id: str) -> ChatMessage | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .where(ChatMessage.room_id == room_id)
                .order_by(ChatMessage.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_room(self, room_id: str, limit: int = 50) -> list[ChatMessage]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ChatMessage)
                .options(selectinload(ChatMessage.author))
                .where(ChatMessage.room_id == room_id)
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
            )
            return list(reversed(result.scalars().all()))

    async def get_actor(self, actor_id: str | None) -> Actor | None:
        if not actor_id:
            return None
        async with self._session_factory() as db:
            result = await db.execute(
                select(Actor).options(selectinload(Actor.resources)).where(Actor.id == actor_id)
            )
            return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> User | None:
        async with self._session_factory() as db:
            result = await db.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()

    # --- writes ---

    async def create_child(
        self,
        room_id: str,
        author_id: str,
        *,
        flavor: str = "",
        content: str = "",
        formula: str | None = None,
        dice: list[int] | None = None,
        actor_id: str | None = None,
        flags: dict | None = None,
        ownership: dict | None = None,
    ) -> ChatMessage:
        """Create a chat message in ``room_id`` and announce it."""
        async with self._session_factory() as db:
            message = ChatMessage(
                room_id=room_id,
                author_id=author_id,
                actor_id=actor_id,
                flavor=flavor,
                content=content,
                formula=formula,
                rolls_json=json.dumps(dice) if dice is not None else None,
                flags_json=json.dumps(flags or {}),
                ownership_json=json.dumps(ownership or {}),
            )
            db.add(message)
            await db.commit()
            message_id = message.id
        logger.info("Created message %s in room %s", message_id, room_id)
        await self._bus.emit(
            LifecycleEvent(LifecycleKind.CREATE, room_id=room_id, message_id=message_id)
        )
        return await self.require(message_id)

    async def update(self, message_id: str, patch: dict) -> ChatMessage | None:
        """Replace ``content`` and/or ``flags`` of a message; None if it is gone."""
        async with self._session_factory() as db:
            message = await db.get(ChatMessage, message_id)
            if message is None:
                return None
            if "content" in patch:
                message.content = patch["content"]
            if "flags" in patch:
                message.flags_json = json.dumps(patch["flags"])
            await db.commit()
            room_id = message.room_id
        await self._bus.emit(
            LifecycleEvent(LifecycleKind.UPDATE, room_id=room_id, message_id=message_id)
        )
        return await self.get(message_id)

    async def delete(self, message_id: str) -> bool:
        async with self._session_factory() as db:
            message = await db.get(ChatMessage, message_id)
            if message is None:
                return False
            room_id = message.room_id
            await db.delete(message)
            await db.commit()
        logger.info("Deleted message %s", message_id)
        await self._bus.emit(
            LifecycleEvent(LifecycleKind.DELETE, room_id=room_id, message_id=message_id)
        )
        return True

    async def adjust_resource(
        self,
        room_id: str,
        actor_id: str,
        resource_id: str,
        delta: int,
        user_id: str | None = None,
    ) -> tuple[int, int] | None:
        """Adjust one actor pool by ``delta``. Store errors are logged and give None."""
        try:
            async with self._session_factory() as db:
                values = await resources_mod.adjust_resource(db, resource_id, delta)
                await db.commit()
        except Exception:
            logger.warning("Resource update failed for %s", resource_id, exc_info=True)
            return None
        if values is None:
            return None
        await self._bus.emit(
            LifecycleEvent(
                LifecycleKind.ACTOR_UPDATE,
                room_id=room_id,
                actor_id=actor_id,
                data={
                    "resource_id": resource_id,
                    "previous": values[0],
                    "current": values[1],
                    "user_id": user_id,
                },
            )
        )
        return values
