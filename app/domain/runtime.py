"""Chat runtime — the shared context every client session of one process runs in."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.messages import DocumentStore
from app.domain.permissions import PermissionDenied
from app.domain.registry import LifecycleEvent, LifecycleKind, MessageLifecycleBus
from app.domain.relay import MutationRelay
from app.domain.resource_changes import ResourceChangeBatcher
from app.domain.resources import HealthPool
from app.domain.session import ClientSession, Outbox
from app.infra.ws_manager import ConnectionManager
from app.models.db_models import ChatMessage, User
from app.models.event import RollKind, RollPayload
from app.modules.dice import parser
from app.modules.dice.evaluator import KeepMode
from app.modules.dice.parser import DiceError
from app.modules.dice.roller import DieRoller, roll_d6, roll_pool

logger = logging.getLogger("ezd6.runtime")

META_FLAG = "ezd6Meta"


class ActorNotFound(ValueError):
    """Raised when a roll names an actor that does not exist."""


class ChatRuntime:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        roll_die: DieRoller = roll_d6,
        fallback_health: int = 3,
        channel: str = "system.ezd6",
        dom_wait_timeout: float = 3.0,
        batch_window: float = 0.05,
        max_chat_dice: int = 6,
    ) -> None:
        self.roll_die = roll_die
        self.dom_wait_timeout = dom_wait_timeout
        self.max_chat_dice = max_chat_dice
        self.bus = MessageLifecycleBus()
        self.store = DocumentStore(session_factory, self.bus)
        self.connections = ConnectionManager()
        self.relay = MutationRelay(self.store, self.connections, channel)
        self.health_pool = HealthPool(fallback_health)
        self.resource_changes = ResourceChangeBatcher(self.store, batch_window)
        self._sessions: dict[str, ClientSession] = {}
        self._headless: dict[tuple[str, str], ClientSession] = {}
        self._actor_sub = self.bus.subscribe(LifecycleKind.ACTOR_UPDATE, self._on_actor_update)

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession], settings, **overrides) -> ChatRuntime:
        options = dict(
            fallback_health=settings.fallback_health,
            channel=settings.relay_channel,
            dom_wait_timeout=settings.dom_wait_timeout,
            batch_window=settings.resource_batch_window,
            max_chat_dice=settings.max_chat_dice,
        )
        options.update(overrides)
        return cls(session_factory, **options)

    # --- sessions ---

    async def connect(self, viewer: User, room_id: str, outbox: Outbox) -> ClientSession:
        """Open a live session for a connected client and join the room channel."""
        headless = self._headless.pop((viewer.id, room_id), None)
        if headless is not None:
            headless.close()
        session = ClientSession(self, viewer, room_id, outbox)
        session.start()
        self.connections.join(room_id, session)
        self._sessions[session.peer_id] = session
        logger.info("User %s connected to room %s", viewer.username, room_id)
        return session

    def disconnect(self, session: ClientSession) -> None:
        self.connections.leave(session.room_id, session.peer_id)
        self._sessions.pop(session.peer_id, None)
        session.close()
        logger.info("User %s left room %s", session.viewer.username, session.room_id)

    def session_for(self, viewer: User, room_id: str) -> ClientSession:
        """The viewer's live session in ``room_id``, else a headless one.

        Headless sessions serve HTTP callers; they never join the room channel,
        so they do not count as online for relay purposes.
        """
        for session in self._sessions.values():
            if session.room_id == room_id and session.user_id == viewer.id:
                return session
        key = (viewer.id, room_id)
        session = self._headless.get(key)
        if session is None:
            session = ClientSession(self, viewer, room_id)
            session.start()
            self._headless[key] = session
        return session

    # --- rolls ---

    def _parse(self, payload: RollPayload) -> parser.ParsedFormula:
        if payload.formula:
            return parser.parse_formula(payload.formula)
        if payload.dice_count is None:
            raise DiceError("A roll needs a formula or a dice count")
        count = payload.dice_count
        if count == 0 or abs(count) > self.max_chat_dice:
            raise DiceError(f"Dice count out of range: {count} (1..{self.max_chat_dice})")
        return parser.parse_formula(parser.formula_for_count(count))

    def _flavor(self, payload: RollPayload, parsed: parser.ParsedFormula) -> tuple[str, dict]:
        title = payload.title.strip()
        if payload.kind == RollKind.ABILITY:
            flavor = parser.ability_flavor(title or "Ability", payload.keyword)
            return flavor, {"title": title, "tag": flavor.split()[-1], "kind": "ability"}
        if payload.kind == RollKind.SAVE:
            flavor = parser.save_flavor(title, payload.target)
            tag = flavor.split()[-1]
            return flavor, {"title": title or "Save", "tag": tag, "kind": "save", "saveTarget": int(tag[7:])}
        if payload.kind == RollKind.MAGICK:
            flavor = parser.magick_flavor(parsed.dice_count, title or "Magick")
            return flavor, {"title": title or "Magick", "tag": "#magick", "kind": "magick"}
        if payload.kind == RollKind.TASK:
            flavor = parser.task_flavor(title or "Task")
            return flavor, {"title": title or "Task", "tag": "#task", "kind": "task"}
        if payload.flavor.strip():
            return payload.flavor.strip(), {}
        signed = -parsed.dice_count if parsed.mode == KeepMode.LOWEST else parsed.dice_count
        return parser.flavor_for_count(signed), {}

    async def create_roll(self, viewer: User, room_id: str, payload: RollPayload) -> ChatMessage:
        """Roll a d6 pool into ``room_id`` as ``viewer``.

        The viewer's session (live or headless) evaluates and persists the
        roll state as part of the create notification.
        """
        parsed = self._parse(payload)
        if payload.actor_id:
            actor = await self.store.get_actor(payload.actor_id)
            if actor is None:
                raise ActorNotFound(f"Actor {payload.actor_id} not found")
            if actor.owner_id != viewer.id and not viewer.is_admin:
                raise PermissionDenied(f"User {viewer.id} cannot roll for actor {actor.id}")

        flavor, meta = self._flavor(payload, parsed)
        roll = roll_pool(parsed, self.roll_die)
        self.session_for(viewer, room_id)
        message = await self.store.create_child(
            room_id,
            viewer.id,
            flavor=flavor,
            formula=roll.formula,
            dice=roll.results,
            actor_id=payload.actor_id,
            flags={META_FLAG: meta} if meta else None,
            ownership=payload.ownership,
        )
        logger.info("User %s rolled %s %s in room %s", viewer.username, roll.formula, roll.results, room_id)
        return message

    async def delete_message(self, viewer: User, message_id: str) -> None:
        message = await self.store.require(message_id)
        if message.author_id != viewer.id and not viewer.is_admin:
            raise PermissionDenied(f"User {viewer.id} cannot delete message {message_id}")
        await self.store.delete(message_id)

    # --- resource summaries ---

    async def _on_actor_update(self, event: LifecycleEvent) -> None:
        data = event.data
        previous, current = data.get("previous"), data.get("current")
        if event.actor_id is None or previous == current:
            return
        actor = await self.store.get_actor(event.actor_id)
        if actor is None:
            return
        row = next((r for r in actor.resources if r.id == data.get("resource_id")), None)
        if row is None:
            return
        author_id = data.get("user_id") or actor.owner_id
        if not author_id:
            logger.debug("No author for resource change on actor %s", actor.id)
            return
        self.resource_changes.queue(
            event.room_id,
            actor.id,
            author_id,
            {
                "resource_key": row.id,
                "resource_id": row.id,
                "resource_name": (row.title or "").strip() or "Resource",
                "resource_icon": row.icon or "",
                "old_value": previous,
                "new_value": current,
                "max_value": row.max_value or 0,
            },
        )

    async def close(self) -> None:
        await self.resource_changes.close()
        for session in list(self._sessions.values()):
            self.disconnect(session)
        for session in self._headless.values():
            session.close()
        self._headless.clear()
        self._actor_sub.unsubscribe()
