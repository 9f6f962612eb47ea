"""Roll state — the persisted modification history of one chat roll."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.modules.dice.evaluator import KeepMode
from app.modules.dice.keywords import first_keyword, resolve_keyword_rule
from app.modules.dice.parser import detect_mode

STATE_FLAG = "rollState"
PROCESSED_FLAG = "processed"


class Confirmation(BaseModel):
    value: int
    delta: int = 0

    @property
    def effective(self) -> int:
        return self.value + self.delta


class RollState(BaseModel):
    """Everything needed to re-derive a roll's evaluation.

    ``original_dice`` holds the faces as rolled. Bonuses live in
    ``delta_dice``; the effective face of die ``i`` is
    ``original_dice[i] + delta_dice[i]``.
    """

    model_config = ConfigDict(populate_by_name=True)

    original_dice: list[int] = Field(alias="originalDice")
    delta_dice: list[int] = Field(default_factory=list, alias="deltaDice")
    burned_ones: list[bool] = Field(default_factory=list, alias="burnedOnes")
    confirmations: list[Confirmation] = Field(default_factory=list)
    locked_result_index: int | None = Field(default=None, alias="lockedResultIndex")
    mode: KeepMode = KeepMode.HIGHEST
    keyword: str = "default"
    initial_all_critical: bool = Field(default=False, alias="initialAllCritical")

    @model_validator(mode="after")
    def _align_lengths(self) -> RollState:
        n = len(self.original_dice)
        if len(self.delta_dice) != n:
            self.delta_dice = (self.delta_dice + [0] * n)[:n]
        if len(self.burned_ones) != n:
            self.burned_ones = (self.burned_ones + [False] * n)[:n]
        lock = self.locked_result_index
        if lock is not None and (not 0 <= lock < n or self.burned_ones[lock]):
            self.locked_result_index = None
        return self

    def effective_dice(self) -> list[int]:
        return [face + delta for face, delta in zip(self.original_dice, self.delta_dice)]

    def resolved_lock(self) -> int | None:
        """The lock, unless it points at a burned die."""
        lock = self.locked_result_index
        if lock is None or self.burned_ones[lock]:
            return None
        return lock

    def to_snapshot(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_snapshot(cls, snapshot: dict) -> RollState:
        return cls.model_validate(snapshot)


def build_initial_state(
    faces: list[int],
    *texts: str | None,
    formula: str | None = None,
) -> RollState:
    """Seed a fresh RollState from the dice actually rolled.

    Args:
        faces: Rolled d6 faces in order.
        texts: Flavor/content sources searched for the keyword and keep mode.
        formula: Dice formula, checked for ``kh``/``kl`` before the texts.
    """
    keyword = first_keyword(*texts)
    mode = detect_mode(formula, *texts)
    threshold = resolve_keyword_rule(keyword).critical_threshold
    return RollState(
        original_dice=list(faces),
        delta_dice=[0] * len(faces),
        burned_ones=[False] * len(faces),
        confirmations=[],
        locked_result_index=None,
        mode=mode,
        keyword=keyword,
        initial_all_critical=bool(faces) and all(v >= threshold for v in faces),
    )


def hydrate(state: RollState, snapshot: dict | None) -> RollState:
    """Overlay a persisted snapshot onto ``state``.

    Every field recorded in the snapshot wins over the freshly derived value:
    actions recorded there must survive any re-render.
    """
    if not snapshot:
        return state
    merged = state.to_snapshot()
    for key in (
        "originalDice",
        "deltaDice",
        "burnedOnes",
        "confirmations",
        "mode",
        "keyword",
    ):
        if isinstance(snapshot.get(key), (list, str)):
            merged[key] = list(snapshot[key]) if isinstance(snapshot[key], list) else snapshot[key]
    if "lockedResultIndex" in snapshot and (
        snapshot["lockedResultIndex"] is None or isinstance(snapshot["lockedResultIndex"], int)
    ):
        merged["lockedResultIndex"] = snapshot["lockedResultIndex"]
    if isinstance(snapshot.get("initialAllCritical"), bool):
        merged["initialAllCritical"] = snapshot["initialAllCritical"]
    return RollState.from_snapshot(merged)


def state_from_flags(flags: dict) -> dict | None:
    snapshot = flags.get(STATE_FLAG)
    return snapshot if isinstance(snapshot, dict) else None
