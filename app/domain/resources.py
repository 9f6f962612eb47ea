"""Resource pools a roll action can spend — karma, stress, health."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db_models import Actor, ActorResource

logger = logging.getLogger("ezd6.resources")

KARMA_TAG = "#karma"
STRESS_TAG = "#stress"
HEALTH_TAG = "#health"
DEFAULT_RESOURCE_ICON = "icons/svg/d20-black.svg"


class DiceChangeMode(str, Enum):
    KARMA = "karma"
    STRESS = "stress"


def normalize_tag(raw: object) -> str:
    """Normalize a tag to ``#lowercase`` form; non-strings and blanks become ``""``."""
    if isinstance(raw, int) and not isinstance(raw, bool):
        raw = str(raw)
    if not isinstance(raw, str):
        return ""
    tag = raw.strip().lower()
    if not tag:
        return ""
    return tag if tag.startswith("#") else f"#{tag}"


@dataclass(frozen=True)
class ResourceCandidate:
    resource_id: str
    actor_id: str
    title: str
    tag: str
    value: int
    max_value: int
    icon: str

    @classmethod
    def from_row(cls, row: ActorResource) -> ResourceCandidate:
        icon = row.icon.strip() if isinstance(row.icon, str) else ""
        return cls(
            resource_id=row.id,
            actor_id=row.actor_id,
            title=(row.title or "").strip() or "Resource",
            tag=normalize_tag(row.tag),
            value=max(0, int(row.value or 0)),
            max_value=max(0, int(row.max_value or 0)),
            icon=icon or DEFAULT_RESOURCE_ICON,
        )


@dataclass(frozen=True)
class DiceChangeResource:
    mode: DiceChangeMode
    resource: ResourceCandidate

    @property
    def exhausted(self) -> bool:
        return self.mode == DiceChangeMode.KARMA and self.resource.value <= 0


def actor_candidates(actor: Actor | None) -> list[ResourceCandidate]:
    if actor is None:
        return []
    return [ResourceCandidate.from_row(r) for r in actor.resources]


def find_dice_change_resource(candidates: list[ResourceCandidate]) -> DiceChangeResource | None:
    """First pool tagged ``#karma`` or ``#stress``, in sheet order."""
    for candidate in candidates:
        if candidate.tag == KARMA_TAG:
            return DiceChangeResource(DiceChangeMode.KARMA, candidate)
        if candidate.tag == STRESS_TAG:
            return DiceChangeResource(DiceChangeMode.STRESS, candidate)
    return None


def find_health_resource(candidates: list[ResourceCandidate]) -> ResourceCandidate | None:
    return next((c for c in candidates if c.tag == HEALTH_TAG), None)


async def adjust_resource(db: AsyncSession, resource_id: str, delta: int) -> tuple[int, int] | None:
    """Apply ``delta`` to a pool in one statement, flooring at zero.

    Returns ``(previous, current)`` or ``None`` if the pool does not exist.
    """
    result = await db.execute(select(ActorResource.value).where(ActorResource.id == resource_id))
    previous = result.scalar_one_or_none()
    if previous is None:
        return None
    raised = ActorResource.value + delta
    await db.execute(
        update(ActorResource)
        .where(ActorResource.id == resource_id)
        .values(value=case((raised < 0, 0), else_=raised))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(select(ActorResource.value).where(ActorResource.id == resource_id))
    current = result.scalar_one()
    logger.debug("Resource %s adjusted by %+d: %s -> %s", resource_id, delta, previous, current)
    return previous, current


class HealthPool:
    """Fallback burn budget for actors without a ``#health`` pool.

    One pool per runtime; every client session of that runtime shares it.
    """

    def __init__(self, value: int = 3) -> None:
        self._value = value

    @property
    def value(self) -> int:
        return self._value

    def can_burn(self) -> bool:
        return self._value > 0

    def consume(self) -> bool:
        if self._value <= 0:
            return False
        self._value -= 1
        return True
