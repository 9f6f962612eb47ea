"""Dice formula parser — d6 pools with keep-highest / keep-lowest (``3d6kh``, ``2d6kl``)."""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.modules.dice.evaluator import KeepMode


class DiceError(ValueError):
    """Raised when a dice formula is invalid."""


@dataclass
class ParsedFormula:
    """Result of parsing a d6 pool formula."""

    original: str
    dice_count: int
    mode: KeepMode = KeepMode.HIGHEST

    @property
    def formula(self) -> str:
        suffix = "kl" if self.mode == KeepMode.LOWEST else "kh"
        return f"{self.dice_count}d6{suffix}"


_FORMULA_PATTERN = re.compile(r"^(\d*)d6(kh|kl)?$", re.IGNORECASE)
_FORMULA_MODE = re.compile(r"d6(k[hl])", re.IGNORECASE)
_TEXT_MODE = re.compile(r"(\d+)d6(kl|kh)?", re.IGNORECASE)

MAX_POOL = 20


def parse_formula(expr: str) -> ParsedFormula:
    """Parse ``NdM`` pool notation restricted to d6.

    Supported formats:
        3d6        - keep highest (default)
        3d6kh      - keep highest
        2d6kl      - keep lowest
        d6         - shorthand for 1d6

    Raises:
        DiceError: If the expression cannot be parsed or is out of range.
    """
    expr = expr.strip()
    if not expr:
        raise DiceError("Empty dice expression")
    m = _FORMULA_PATTERN.match(expr)
    if not m:
        raise DiceError(f"Invalid dice formula: {expr}")
    count = int(m.group(1)) if m.group(1) else 1
    if count < 1 or count > MAX_POOL:
        raise DiceError(f"Dice count out of range: {count} (1..{MAX_POOL})")
    mode = KeepMode.LOWEST if (m.group(2) or "").lower() == "kl" else KeepMode.HIGHEST
    return ParsedFormula(original=expr, dice_count=count, mode=mode)


def detect_mode(formula: str | None, *texts: str | None) -> KeepMode:
    """Find the keep mode in a formula, then in message text; default keep-highest."""
    m = _FORMULA_MODE.search(formula or "")
    if m:
        return KeepMode.LOWEST if m.group(1).lower() == "kl" else KeepMode.HIGHEST
    for text in texts:
        tm = _TEXT_MODE.search(text or "")
        if tm and tm.group(2):
            return KeepMode.LOWEST if tm.group(2).lower() == "kl" else KeepMode.HIGHEST
    return KeepMode.HIGHEST


# --- Signed chat dice counts ---
# A positive count rolls keep-highest, a negative count keep-lowest.


def formula_for_count(count: int) -> str:
    if count == 0:
        raise DiceError("Cannot roll zero dice")
    mode = "kl" if count < 0 else "kh"
    return f"{abs(count)}d6{mode}"


def flavor_for_count(count: int, label: str = "Roll", tag: str = "#default") -> str:
    return f"{label} {formula_for_count(count)} {tag}".strip()


# --- Sheet roll flavors ---


def _hash(keyword: str | None, fallback: str = "default") -> str:
    word = (keyword or "").strip().lstrip("#") or fallback
    return f"#{word}"


def ability_flavor(title: str, keyword: str | None = None) -> str:
    return f"{title.strip()} {_hash(keyword)}".strip()


def save_flavor(title: str | None, target: int | None = None) -> str:
    if not target or target < 1:
        target = 6
    return f"{(title or '').strip() or 'Save'} #target{target}"


def magick_flavor(count: int, label: str = "Magick") -> str:
    return f"{label} {count}d6 #magick"


def task_flavor(label: str) -> str:
    return f"{label.strip()} #task".strip()
