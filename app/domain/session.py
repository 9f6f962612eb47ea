"""Client session — one viewer's live view of a chat room.

A session is the server-side stand-in for a connected client. It listens to
the lifecycle bus, keeps its own transcript and roll registry, renders every
roll for its viewer and runs that viewer's +1 / confirm / burn actions.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Awaitable, Callable

from app.domain.controller import ActionOutcome, RollController
from app.domain.permissions import can_modify, require_modify
from app.domain.registry import LifecycleEvent, LifecycleKind, RollRegistry, Subscription
from app.domain.relay import PersistOutcome
from app.domain.roll_state import PROCESSED_FLAG
from app.domain.transcript import ChatTranscript, DedupGuard
from app.models.db_models import ChatMessage, User
from app.models.result import ActionResult, MessageView
from app.modules.dice.parser import DiceError

if TYPE_CHECKING:
    from app.domain.runtime import ChatRuntime

logger = logging.getLogger("ezd6.session")

Outbox = Callable[[dict], Awaitable[None]]

ACTIONS = ("buff", "confirm", "burn")


class ClientSession:
    def __init__(
        self,
        runtime: ChatRuntime,
        viewer: User,
        room_id: str,
        outbox: Outbox | None = None,
    ) -> None:
        self.peer_id = uuid.uuid4().hex
        self.viewer = viewer
        self.room_id = room_id
        self.registry = RollRegistry()
        self.transcript = ChatTranscript()
        self.guard = DedupGuard(self.transcript)
        self.notifications: list[tuple[str, str]] = []
        self._runtime = runtime
        self._outbox = outbox
        self._subs: list[Subscription] = []

    # --- Peer protocol ---

    @property
    def user_id(self) -> str:
        return self.viewer.id

    @property
    def is_admin(self) -> bool:
        return self.viewer.is_admin

    async def receive(self, channel: str, payload: dict) -> None:
        relay = self._runtime.relay
        if channel == relay.channel:
            await relay.apply_envelope(self.viewer, payload)
            return
        await self._send({"type": "broadcast", "channel": channel, "payload": payload})

    # --- lifecycle ---

    def start(self) -> None:
        bus = self._runtime.bus
        self._subs = [
            bus.subscribe(LifecycleKind.CREATE, self._on_create),
            bus.subscribe(LifecycleKind.UPDATE, self._on_update),
            bus.subscribe(LifecycleKind.DELETE, self._on_delete),
        ]

    def close(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []
        self.registry.close()

    async def replay(self, limit: int = 50) -> None:
        """Render the room's recent history into this session."""
        for message in await self._runtime.store.list_room(self.room_id, limit):
            self.registry.track_processed(message.id)
            full = await self._runtime.store.get(message.id)
            if full is not None:
                await self._render_message(full)

    async def _send(self, frame: dict) -> None:
        if self._outbox is None:
            return
        try:
            await self._outbox(frame)
        except Exception:
            logger.warning("Outbox delivery failed for peer %s", self.peer_id, exc_info=True)

    async def notify(self, level: str, text: str) -> None:
        self.notifications.append((level, text))
        await self._send({"type": "notification", "level": level, "text": text})

    # --- bus handlers ---

    async def _on_create(self, event: LifecycleEvent) -> None:
        if event.room_id != self.room_id or event.message_id is None:
            return
        message = await self._runtime.store.get(event.message_id)
        if message is None:
            return
        await self._render_message(message)

        if self.registry.has_processed(message.id):
            return
        self.registry.track_processed(message.id)
        # Only the author's client evaluates and persists a new roll.
        if message.author_id != self.viewer.id:
            return

        controller = self._controller(message)
        if controller is None:
            return
        node = await self.transcript.wait_for_node(message.id, self._runtime.dom_wait_timeout)
        if node is not None:
            self.guard.prune(message.id, node)

        modifiable = can_modify(self.viewer, message)
        if message.flags.get(PROCESSED_FLAG) and not modifiable:
            await self._show(message.id, controller.render(False))
            return
        outcome = await self._runtime.relay.safe_update_message(
            self.viewer,
            message.id,
            controller.patch(message.flags, modifiable),
            notify=self.notify,
        )
        if outcome in (PersistOutcome.WRITTEN, PersistOutcome.RELAYED):
            await self._send({"type": "scroll"})
        if node is not None:
            self._bind(message, controller)

    async def _on_update(self, event: LifecycleEvent) -> None:
        if event.room_id != self.room_id or event.message_id is None:
            return
        message = await self._runtime.store.get(event.message_id)
        if message is not None:
            await self._render_message(message)

    async def _on_delete(self, event: LifecycleEvent) -> None:
        if event.room_id != self.room_id or event.message_id is None:
            return
        self.registry.release(event.message_id)
        self.transcript.remove_message(event.message_id)
        await self._send({"type": "remove", "message_id": event.message_id})

    # --- rendering ---

    def _controller(self, message: ChatMessage) -> RollController | None:
        runtime = self._runtime
        return RollController.from_message(
            message,
            store=runtime.store,
            health_pool=runtime.health_pool,
            roll_die=runtime.roll_die,
            acting_user_id=self.viewer.id,
        )

    async def _show(self, message_id: str, html: str) -> None:
        node = self.transcript.insert(message_id, html)
        self.guard.prune(message_id, node)
        await self._send({"type": "render", "message_id": message_id, "html": html})

    async def _render_message(self, message: ChatMessage) -> None:
        """Re-render a message for this viewer from its persisted state."""
        if not message.flags.get(PROCESSED_FLAG):
            await self._show(message.id, message.content)
            return
        controller = self._controller(message)
        if controller is None:
            await self._show(message.id, message.content)
            return
        await self._show(message.id, controller.render(can_modify(self.viewer, message)))
        self._bind(message, controller)

    def _bind(self, message: ChatMessage, controller: RollController) -> None:
        message_id = message.id
        self.registry.unbind(message_id)
        self.registry.bind(message_id, controller)
        actor_id = message.actor_id
        if not actor_id or self.registry.has_watcher(message_id):
            return

        async def on_actor_update(event: LifecycleEvent) -> None:
            if event.actor_id != actor_id:
                return
            latest = await self._runtime.store.get(message_id)
            if latest is not None:
                await self._render_message(latest)

        sub = self._runtime.bus.subscribe(LifecycleKind.ACTOR_UPDATE, on_actor_update)
        self.registry.add_watcher(message_id, sub)

    # --- actions ---

    async def perform(self, action: str, message_id: str) -> ActionResult:
        """Run ``action`` on a roll as this viewer and persist the result.

        Raises:
            MessageNotFound: the message does not exist.
            PermissionDenied: the viewer may not modify the message.
            DiceError: unknown action, or the message is not a roll.
        """
        if action not in ACTIONS:
            raise DiceError(f"Unknown roll action: {action}")
        if not self.registry.begin_action(message_id):
            logger.debug("Dropping %s on %s: another action is in flight", action, message_id)
            return ActionResult(success=False, action=action, message_id=message_id, outcome="busy")
        try:
            message = await self._runtime.store.require(message_id)
            require_modify(self.viewer, message)

            controller = self.registry.bound(message_id)
            if controller is not None:
                controller.sync(message)
            else:
                controller = self._controller(message)
            if controller is None:
                raise DiceError(f"Message {message_id} is not a roll")

            outcome = await getattr(controller, action)()
            result = ActionResult(
                success=False,
                action=action,
                message_id=message_id,
                outcome=outcome.value,
                state=controller.state.to_snapshot(),
                parsed=controller.parsed_result(),
            )
            if outcome != ActionOutcome.APPLIED:
                return result

            patch = controller.patch(message.flags, True)
            persisted = await self._runtime.relay.safe_update_message(
                self.viewer, message_id, patch, notify=self.notify
            )
            result.outcome = persisted.value
            result.content = patch["content"]
            result.success = persisted in (PersistOutcome.WRITTEN, PersistOutcome.RELAYED)
            if result.success:
                await self._send({"type": "scroll"})
            logger.info(
                "User %s applied %s to message %s (%s)",
                self.viewer.id,
                action,
                message_id,
                persisted.value,
            )
            return result
        finally:
            self.registry.end_action(message_id)

    def view(self, message: ChatMessage) -> MessageView:
        """The message as this viewer sees it, with markup rendered for them."""
        modifiable = can_modify(self.viewer, message)
        controller = self._controller(message) if message.flags.get(PROCESSED_FLAG) else None
        view = MessageView(
            message_id=message.id,
            room_id=message.room_id,
            author_id=message.author_id,
            actor_id=message.actor_id,
            flavor=message.flavor,
            formula=message.formula,
            content=message.content,
            processed=controller is not None,
            can_modify=modifiable,
        )
        if controller is not None:
            view.content = controller.render(modifiable)
            view.state = controller.state.to_snapshot()
            view.parsed = controller.parsed_result()
        return view
