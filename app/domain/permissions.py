"""Permission helpers — who may modify a chat roll, and who may write it directly."""

from __future__ import annotations

import logging

from app.models.db_models import ChatMessage, User

logger = logging.getLogger("ezd6.permissions")

UPDATE_LEVELS = frozenset({"update", "owner"})


class PermissionDenied(ValueError):
    """Raised when a viewer may not act on a message."""


def has_write_authority(viewer: User | None, message: ChatMessage | None) -> bool:
    """The author or an active admin may write the message document directly."""
    if viewer is None or message is None or not viewer.is_active:
        return False
    return message.author_id == viewer.id or viewer.is_admin


def can_modify(viewer: User | None, message: ChatMessage | None) -> bool:
    """Whether ``viewer`` may act on ``message``. Any error counts as no."""
    try:
        if viewer is None or message is None:
            return False
        if has_write_authority(viewer, message):
            return True
        return message.ownership.get(viewer.id) in UPDATE_LEVELS
    except Exception:
        logger.exception("Permission check failed for message %s", getattr(message, "id", None))
        return False


def require_modify(viewer: User, message: ChatMessage) -> None:
    """Raises PermissionDenied unless ``viewer`` may act on ``message``."""
    if not can_modify(viewer, message):
        raise PermissionDenied(f"User {viewer.id} cannot modify message {message.id}")
