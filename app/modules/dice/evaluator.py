"""Dice evaluator — classify a set of d6 results under a keyword rule.

Pure and deterministic: the same inputs always give an equal ``ParsedRoll``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from app.modules.dice.keywords import KeywordRule, resolve_keyword_rule


class KeepMode(str, Enum):
    HIGHEST = "keep-highest"
    LOWEST = "keep-lowest"


@dataclass(frozen=True)
class DieView:
    value: int
    highlighted: bool
    faded: bool


@dataclass(frozen=True)
class ParsedRoll:
    dice: tuple[DieView, ...]
    can_spend_for_bonus: bool
    can_confirm: bool
    has_unburned_ones: bool
    rule: KeywordRule
    active_index: int | None

    @property
    def active_value(self) -> int:
        if self.active_index is None:
            return 0
        return self.dice[self.active_index].value


def _select_active(
    available: list[tuple[int, int]], mode: KeepMode
) -> int | None:
    if not available:
        return None
    pick = min if mode == KeepMode.LOWEST else max
    target = pick(value for value, _ in available)
    # first occurrence in original order
    return next(index for value, index in available if value == target)


def evaluate_dice(
    dice: Sequence[int],
    keyword: str,
    mode: KeepMode | str = KeepMode.HIGHEST,
    burned_ones: Sequence[bool] = (),
    locked_index: int | None = None,
    initial_all_critical: bool = False,
) -> ParsedRoll:
    """Evaluate die values into a ParsedRoll.

    Args:
        dice: Effective die values (1..6) in roll order.
        keyword: Roll keyword; unknown keywords use the ``default`` rule.
        mode: Keep-highest or keep-lowest selection of the active die.
        burned_ones: Per-die flags; burned dice are never selected.
        locked_index: Previously pinned active die. Used unchanged unless burned.
        initial_all_critical: Every die met the threshold when first rolled.

    Returns:
        The derived view with highlighting and action eligibility.
    """
    rule = resolve_keyword_rule(keyword)
    mode = KeepMode(mode)
    threshold = rule.critical_threshold

    def burned(index: int) -> bool:
        return index < len(burned_ones) and bool(burned_ones[index])

    available = [(value, index) for index, value in enumerate(dice) if not burned(index)]

    if locked_index is not None and 0 <= locked_index < len(dice) and not burned(locked_index):
        active_index: int | None = locked_index
    else:
        active_index = _select_active(available, mode)

    active_value = 0 if active_index is None else dice[active_index]
    has_ones = any(value == 1 for value, _ in available)

    highlighted = [False] * len(dice)
    if active_index is not None:
        highlighted[active_index] = True

        if mode == KeepMode.LOWEST:
            if active_value == 1:
                broaden = [i for v, i in available if v == 1]
            elif active_value >= threshold and initial_all_critical:
                broaden = [i for v, i in available if v >= threshold]
            else:
                broaden = []
        elif rule.ones_always_fail and has_ones:
            # Unburned ones override the kept die.
            highlighted = [False] * len(dice)
            broaden = [i for v, i in available if v == 1]
        else:
            if active_value >= threshold:
                broaden = [i for v, i in available if v >= threshold]
            elif active_value == 1:
                broaden = [i for v, i in available if v == 1]
            else:
                broaden = []
        for i in broaden:
            highlighted[i] = True

    views = tuple(
        DieView(value=value, highlighted=highlighted[i], faded=burned(i) or not highlighted[i])
        for i, value in enumerate(dice)
    )

    ones_block = rule.ones_always_fail and has_ones
    can_spend = (
        rule.allow_karma
        and not ones_block
        and active_index is not None
        and 2 <= active_value < threshold
    )
    can_confirm = (
        rule.allow_confirm
        and not ones_block
        and active_index is not None
        and active_value >= threshold
    )

    return ParsedRoll(
        dice=views,
        can_spend_for_bonus=can_spend,
        can_confirm=can_confirm,
        has_unburned_ones=has_ones,
        rule=rule,
        active_index=active_index,
    )
