"""Interactive roll controller — the +1 / confirm / burn state machine for one roll.

Every transition mutates the RollState, re-evaluates it, and hands back a
``{content, flags}`` patch for the caller to persist.
"""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable, Union

from app.domain import rendering
from app.domain.messages import DocumentStore
from app.domain.resources import (
    DiceChangeMode,
    HealthPool,
    actor_candidates,
    find_dice_change_resource,
    find_health_resource,
)
from app.domain.roll_state import (
    PROCESSED_FLAG,
    STATE_FLAG,
    Confirmation,
    RollState,
    build_initial_state,
    hydrate,
    state_from_flags,
)
from app.models.db_models import Actor, ChatMessage
from app.models.result import DieResult, ParsedRollResult
from app.modules.dice.evaluator import ParsedRoll, evaluate_dice

logger = logging.getLogger("ezd6.controller")

DieSource = Callable[[], Union[int, Awaitable[int]]]


class ActionOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    FAILED = "failed"


def apply_bonus(value: int, increase: int = 1) -> int:
    """Raise a face by ``increase``, capped at 6. Faces of 1 and 6 never move."""
    if value in (1, 6):
        return value
    return min(6, value + increase)


class RollController:
    def __init__(
        self,
        message: ChatMessage,
        state: RollState,
        *,
        store: DocumentStore,
        health_pool: HealthPool,
        roll_die: DieSource,
        acting_user_id: str | None = None,
    ) -> None:
        self.message_id = message.id
        self.room_id = message.room_id
        self.actor: Actor | None = message.actor
        self.state = state
        self._store = store
        self._health_pool = health_pool
        self._roll_die = roll_die
        self._acting_user_id = acting_user_id
        self.parsed: ParsedRoll = self.refresh()

    @classmethod
    def from_message(
        cls,
        message: ChatMessage,
        **deps,
    ) -> RollController | None:
        """Build a controller for a roll message; None if it carries no d6 results."""
        snapshot = state_from_flags(message.flags)
        faces = message.dice
        if not faces and snapshot is None:
            return None
        keyword_hint = snapshot.get("keyword") if snapshot else None
        base = build_initial_state(
            faces,
            keyword_hint if isinstance(keyword_hint, str) else None,
            message.flavor,
            message.content,
            formula=message.formula,
        )
        return cls(message, hydrate(base, snapshot), **deps)

    # --- evaluation ---

    def refresh(self) -> ParsedRoll:
        """Re-evaluate and pin the active die if nothing is pinned yet."""
        state = self.state
        self.parsed = evaluate_dice(
            state.effective_dice(),
            state.keyword,
            state.mode,
            state.burned_ones,
            state.resolved_lock(),
            state.initial_all_critical,
        )
        if state.locked_result_index is None and self.parsed.active_index is not None:
            state.locked_result_index = self.parsed.active_index
        return self.parsed

    def sync(self, message: ChatMessage) -> None:
        """Re-hydrate from the latest persisted snapshot of ``message``."""
        self.actor = message.actor
        self.state = hydrate(self.state, state_from_flags(message.flags))
        self.refresh()

    # --- active target ---

    @property
    def targets_confirmation(self) -> bool:
        return bool(self.state.confirmations)

    def active_value(self) -> int:
        if self.targets_confirmation:
            return self.state.confirmations[-1].effective
        index = self.parsed.active_index
        return 0 if index is None else self.state.effective_dice()[index]

    def _ones_block(self) -> bool:
        return self.parsed.rule.ones_always_fail and self.parsed.has_unburned_ones

    def can_buff(self) -> bool:
        if not self.targets_confirmation:
            return self.parsed.can_spend_for_bonus
        rule = self.parsed.rule
        value = self.active_value()
        return rule.allow_karma and not self._ones_block() and 2 <= value < rule.critical_threshold

    def can_confirm(self) -> bool:
        if not self.targets_confirmation:
            return self.parsed.can_confirm
        rule = self.parsed.rule
        return (
            rule.allow_confirm
            and not self._ones_block()
            and self.active_value() >= rule.critical_threshold
        )

    def can_burn(self) -> bool:
        return self.parsed.rule.allow_burn_ones and self.parsed.has_unburned_ones

    def only_ones_left(self) -> bool:
        state = self.state
        available = [v for v, burned in zip(state.effective_dice(), state.burned_ones) if not burned]
        return bool(available) and all(v == 1 for v in available)

    # --- transitions ---

    async def _adjust(self, resource_id: str, delta: int) -> tuple[int, int] | None:
        if self.actor is None:
            return None
        return await self._store.adjust_resource(
            self.room_id, self.actor.id, resource_id, delta, user_id=self._acting_user_id
        )

    async def _spend(self, resource_id: str) -> ActionOutcome:
        """Take one point from a pool, judged by the value it held at write time."""
        values = await self._adjust(resource_id, -1)
        if values is None:
            return ActionOutcome.FAILED
        if values[0] <= 0:
            logger.debug("Pool %s already empty on %s", resource_id, self.message_id)
            return ActionOutcome.NOOP
        return ActionOutcome.APPLIED

    async def buff(self) -> ActionOutcome:
        """Spend karma (or take stress) to add +1 to the active target."""
        if not self.can_buff():
            return ActionOutcome.NOOP

        change = find_dice_change_resource(actor_candidates(self.actor))
        if change is not None and change.mode == DiceChangeMode.KARMA:
            if change.resource.value <= 0:
                return ActionOutcome.NOOP
            spent = await self._spend(change.resource.resource_id)
            if spent != ActionOutcome.APPLIED:
                return spent
        elif change is not None and change.mode == DiceChangeMode.STRESS:
            if await self._adjust(change.resource.resource_id, 1) is None:
                return ActionOutcome.FAILED

        if self.targets_confirmation:
            target = self.state.confirmations[-1]
            target.delta = apply_bonus(target.effective) - target.value
        else:
            index = self.parsed.active_index
            face = self.state.original_dice[index]
            current = face + self.state.delta_dice[index]
            self.state.delta_dice[index] = apply_bonus(current) - face
        self.refresh()
        return ActionOutcome.APPLIED

    async def confirm(self) -> ActionOutcome:
        """Roll one more d6 after a critical."""
        if not self.can_confirm():
            return ActionOutcome.NOOP
        value = self._roll_die()
        if inspect.isawaitable(value):
            value = await value
        self.state.confirmations.append(Confirmation(value=int(value), delta=0))
        self.refresh()
        return ActionOutcome.APPLIED

    async def burn(self) -> ActionOutcome:
        """Spend health to burn the first unburned 1."""
        if not self.can_burn():
            return ActionOutcome.NOOP
        state = self.state
        effective = state.effective_dice()
        index = next(
            (i for i, v in enumerate(effective) if v == 1 and not state.burned_ones[i]),
            None,
        )
        if index is None:
            return ActionOutcome.NOOP

        health = find_health_resource(actor_candidates(self.actor))
        if health is not None:
            if health.value <= 0:
                return ActionOutcome.NOOP
            spent = await self._spend(health.resource_id)
            if spent != ActionOutcome.APPLIED:
                return spent
        elif not self._health_pool.consume():
            return ActionOutcome.NOOP

        state.burned_ones[index] = True
        state.delta_dice[index] = 0
        if state.locked_result_index == index:
            state.locked_result_index = None
        self.refresh()
        return ActionOutcome.APPLIED

    # --- output ---

    def flags(self, existing: dict | None = None) -> dict:
        flags = dict(existing or {})
        flags[PROCESSED_FLAG] = True
        flags[STATE_FLAG] = self.state.to_snapshot()
        return flags

    def patch(self, existing_flags: dict | None, can_modify: bool) -> dict:
        return {"content": self.render(can_modify), "flags": self.flags(existing_flags)}

    def parsed_result(self) -> ParsedRollResult:
        parsed = self.parsed
        return ParsedRollResult(
            dice=[DieResult(value=d.value, highlighted=d.highlighted, faded=d.faded) for d in parsed.dice],
            can_spend_for_bonus=parsed.can_spend_for_bonus,
            can_confirm=parsed.can_confirm,
            has_unburned_ones=parsed.has_unburned_ones,
            active_index=parsed.active_index,
            critical_threshold=parsed.rule.critical_threshold,
        )

    def render(self, can_modify: bool) -> str:
        threshold = self.parsed.rule.critical_threshold
        dice = []
        for i, view in enumerate(self.parsed.dice):
            kind = rendering.die_kind(view.value, threshold) if view.highlighted else "grey"
            dice.append(
                rendering.DieMarkup(
                    value=view.value,
                    delta=self.state.delta_dice[i],
                    image=rendering.die_image_path(view.value, kind),
                    faded=view.faded,
                )
            )
        confirmations = [
            rendering.DieMarkup(
                value=c.effective,
                delta=c.delta,
                image=rendering.die_image_path(c.effective, rendering.die_kind(c.effective, threshold)),
            )
            for c in self.state.confirmations
        ]
        buttons = self._buttons() if can_modify else None
        return rendering.render_roll(self.message_id, dice, confirmations, buttons)

    def _buttons(self) -> rendering.ButtonsMarkup | None:
        threshold = self.parsed.rule.critical_threshold
        candidates = actor_candidates(self.actor)
        buttons = rendering.ButtonsMarkup()

        if self.can_burn():
            health = find_health_resource(candidates)
            if health is not None:
                disabled = health.value <= 0
            else:
                disabled = not self._health_pool.can_burn()
            buttons.burn = rendering.BurnButton(
                die_icon=rendering.die_image_path(1, "red"),
                disabled=disabled,
                icon=health.icon if health else "",
                icon_alt=(health.tag if health else "") or "health",
            )
        elif self.only_ones_left():
            return None

        if self.can_buff():
            change = find_dice_change_resource(candidates)
            buttons.buff = rendering.BuffButton(
                disabled=change.exhausted if change else False,
                icon=change.resource.icon if change else "",
                icon_alt=(change.resource.tag or change.mode.value) if change else "",
                slashed=bool(change and change.mode == DiceChangeMode.KARMA),
            )
        if self.can_confirm():
            buttons.confirm = rendering.ConfirmButton(
                icon=rendering.die_image_path(threshold, "green"),
                threshold=threshold,
            )
        return buttons if buttons else None
