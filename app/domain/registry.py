"""Message lifecycle bus and the per-client roll registry."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from app.domain.controller import RollController

logger = logging.getLogger("ezd6.registry")


class LifecycleKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACTOR_UPDATE = "actor_update"


@dataclass
class LifecycleEvent:
    kind: LifecycleKind
    room_id: str
    message_id: str | None = None
    actor_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[LifecycleEvent], Awaitable[None]]


class Subscription:
    def __init__(self, bus: MessageLifecycleBus, kind: LifecycleKind, listener: Listener) -> None:
        self._bus = bus
        self.kind = kind
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False


class MessageLifecycleBus:
    """Typed create/update/delete/actor-update notifications for chat documents."""

    def __init__(self) -> None:
        self._listeners: dict[LifecycleKind, list[Subscription]] = defaultdict(list)

    def subscribe(self, kind: LifecycleKind, listener: Listener) -> Subscription:
        sub = Subscription(self, kind, listener)
        self._listeners[kind].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._listeners.get(sub.kind, [])
        if sub in subs:
            subs.remove(sub)

    def listener_count(self, kind: LifecycleKind) -> int:
        return len(self._listeners.get(kind, []))

    async def emit(self, event: LifecycleEvent) -> None:
        """Deliver ``event`` to every listener; one failing listener does not stop the rest."""
        for sub in list(self._listeners.get(event.kind, [])):
            if not sub.active:
                continue
            try:
                await sub.listener(event)
            except Exception:
                logger.exception(
                    "Lifecycle listener failed for %s on message %s",
                    event.kind.value,
                    event.message_id,
                )


class RollRegistry:
    """Per-client bookkeeping for rolls: processed ids, bound controllers,
    resource watchers and in-flight actions. Torn down per message on delete.
    """

    def __init__(self) -> None:
        self._processed: set[str] = set()
        self._controllers: dict[str, RollController] = {}
        self._watchers: dict[str, Subscription] = {}
        self._in_flight: set[str] = set()

    # processed ids

    def has_processed(self, message_id: str) -> bool:
        return message_id in self._processed

    def track_processed(self, message_id: str) -> None:
        self._processed.add(message_id)

    # bound controllers

    def bind(self, message_id: str, controller: RollController) -> None:
        self._controllers[message_id] = controller

    def bound(self, message_id: str) -> RollController | None:
        return self._controllers.get(message_id)

    def unbind(self, message_id: str) -> None:
        self._controllers.pop(message_id, None)

    # resource watchers

    def has_watcher(self, message_id: str) -> bool:
        return message_id in self._watchers

    def add_watcher(self, message_id: str, sub: Subscription) -> None:
        self._watchers[message_id] = sub

    def watcher_count(self) -> int:
        return len(self._watchers)

    # in-flight actions

    def begin_action(self, message_id: str) -> bool:
        """Claim ``message_id`` for one action; False if one is already running."""
        if message_id in self._in_flight:
            return False
        self._in_flight.add(message_id)
        return True

    def end_action(self, message_id: str) -> None:
        self._in_flight.discard(message_id)

    def release(self, message_id: str) -> None:
        """Forget everything held for a deleted message."""
        self._processed.discard(message_id)
        self._controllers.pop(message_id, None)
        self._in_flight.discard(message_id)
        sub = self._watchers.pop(message_id, None)
        if sub is not None:
            sub.unsubscribe()

    def close(self) -> None:
        for message_id in list(self._watchers):
            self.release(message_id)
        self._processed.clear()
        self._controllers.clear()
