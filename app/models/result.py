"""Result schemas — what the engine reports back after an action."""

from __future__ import annotations

from pydantic import BaseModel


class DieResult(BaseModel):
    value: int
    highlighted: bool
    faded: bool


class ParsedRollResult(BaseModel):
    dice: list[DieResult]
    can_spend_for_bonus: bool
    can_confirm: bool
    has_unburned_ones: bool
    active_index: int | None = None
    critical_threshold: int


class ActionResult(BaseModel):
    success: bool
    action: str
    message_id: str | None = None
    outcome: str  # "written" | "relayed" | "noop" | "busy" | "no_authority" | "failed" | ...
    content: str | None = None
    state: dict | None = None
    parsed: ParsedRollResult | None = None
    error: str | None = None


class MessageView(BaseModel):
    message_id: str
    room_id: str
    author_id: str
    actor_id: str | None = None
    flavor: str
    formula: str | None = None
    content: str
    processed: bool
    can_modify: bool
    state: dict | None = None
    parsed: ParsedRollResult | None = None
