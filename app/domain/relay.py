"""Mutation relay — route writes a client cannot make itself through an admin peer."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable

from pydantic import ValidationError

from app.domain.messages import DocumentStore
from app.domain.permissions import has_write_authority
from app.infra.ws_manager import ConnectionManager
from app.models.db_models import User
from app.models.event import RELAY_ACTION, RelayEnvelope

logger = logging.getLogger("ezd6.relay")

NO_ADMIN_WARNING = "Unable to update the roll because no admin is currently online."

Notifier = Callable[[str, str], Awaitable[None]]


class PersistOutcome(str, Enum):
    WRITTEN = "written"
    RELAYED = "relayed"
    NO_AUTHORITY = "no_authority"
    FAILED = "failed"
    MISSING = "missing"


class MutationRelay:
    def __init__(
        self,
        store: DocumentStore,
        connections: ConnectionManager,
        channel: str,
    ) -> None:
        self._store = store
        self._connections = connections
        self.channel = channel

    @staticmethod
    def build_envelope(message_id: str, patch: dict) -> dict:
        return RelayEnvelope(msgId=message_id, data=patch).model_dump()

    async def safe_update_message(
        self,
        viewer: User,
        message_id: str,
        patch: dict,
        notify: Notifier | None = None,
    ) -> PersistOutcome:
        """Write ``patch`` directly when ``viewer`` has authority, else relay it.

        Never raises: store failures are logged and reported as ``failed``.
        """
        try:
            message = await self._store.get(message_id)
            if message is None:
                logger.debug("Skipping update of missing message %s", message_id)
                return PersistOutcome.MISSING

            if has_write_authority(viewer, message):
                await self._store.update(message_id, patch)
                return PersistOutcome.WRITTEN

            admin = self._connections.first_online_admin(message.room_id)
            if admin is None:
                logger.warning("%s (message %s)", NO_ADMIN_WARNING, message_id)
                if notify is not None:
                    await notify("warn", NO_ADMIN_WARNING)
                return PersistOutcome.NO_AUTHORITY

            envelope = self.build_envelope(message_id, patch)
            delivered = await self._connections.send(message.room_id, admin, self.channel, envelope)
            if not delivered:
                return PersistOutcome.FAILED
            logger.info(
                "Relayed update of message %s from user %s via admin %s",
                message_id,
                viewer.id,
                admin.user_id,
            )
            return PersistOutcome.RELAYED
        except Exception:
            logger.exception("safe_update_message failed for message %s", message_id)
            return PersistOutcome.FAILED

    async def apply_envelope(self, receiver: User, payload: dict) -> PersistOutcome | None:
        """Admin side of the relay. Unknown actions and non-admin receivers are ignored."""
        if not isinstance(payload, dict) or payload.get("action") != RELAY_ACTION:
            return None
        if not receiver.is_admin:
            return None
        try:
            envelope = RelayEnvelope.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed relay envelope: %r", payload)
            return None
        try:
            updated = await self._store.update(envelope.msgId, envelope.data.model_dump(exclude_none=True))
        except Exception:
            logger.exception("Admin relay update failed for message %s", envelope.msgId)
            return PersistOutcome.FAILED
        return PersistOutcome.WRITTEN if updated is not None else PersistOutcome.MISSING
