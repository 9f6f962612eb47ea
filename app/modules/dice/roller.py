"""d6 roller — the randomness source behind every pool and confirmation roll."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from app.modules.dice.evaluator import KeepMode
from app.modules.dice.parser import ParsedFormula

DieRoller = Callable[[], int]


def roll_d6() -> int:
    return random.randint(1, 6)


@dataclass
class PoolRoll:
    formula: str
    mode: KeepMode
    results: list[int] = field(default_factory=list)

    @property
    def kept(self) -> int:
        if not self.results:
            return 0
        return min(self.results) if self.mode == KeepMode.LOWEST else max(self.results)


def roll_pool(parsed: ParsedFormula, die: DieRoller = roll_d6) -> PoolRoll:
    """Roll every die of a parsed pool.

    Args:
        parsed: Pool formula to roll.
        die: Source of single d6 results; swap in a scripted source for tests.

    Returns:
        A PoolRoll with the raw faces in roll order.
    """
    results = [die() for _ in range(parsed.dice_count)]
    for r in results:
        if not 1 <= r <= 6:
            raise ValueError(f"Die source returned out-of-range face: {r}")
    return PoolRoll(formula=parsed.formula, mode=parsed.mode, results=results)
