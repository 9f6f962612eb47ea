"""Client event schemas — inbound chat actions and the relay envelope."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


# --- Payload models ---


class RollKind(str, Enum):
    POOL = "pool"
    ABILITY = "ability"
    SAVE = "save"
    MAGICK = "magick"
    TASK = "task"


class RollPayload(BaseModel):
    action: Literal["roll"] = "roll"
    kind: RollKind = RollKind.POOL
    formula: str | None = None  # e.g. "3d6kh"; wins over dice_count
    dice_count: int | None = None  # signed chat count, negative keeps lowest
    flavor: str = ""
    title: str = ""
    keyword: str | None = None  # ability rolls
    target: int | None = None  # save rolls, defaults to 6
    actor_id: str | None = None
    ownership: dict[str, str] = Field(default_factory=dict)


class BuffPayload(BaseModel):
    action: Literal["buff"] = "buff"
    message_id: str


class ConfirmPayload(BaseModel):
    action: Literal["confirm"] = "confirm"
    message_id: str


class BurnPayload(BaseModel):
    action: Literal["burn"] = "burn"
    message_id: str


class DeletePayload(BaseModel):
    action: Literal["delete"] = "delete"
    message_id: str


ClientPayload = Annotated[
    Union[RollPayload, BuffPayload, ConfirmPayload, BurnPayload, DeletePayload],
    Field(discriminator="action"),
]


class ClientEvent(BaseModel):
    """An action submitted by one connected client."""

    payload: ClientPayload


# --- Relay ---

RELAY_ACTION = "updateMessage"


class RelayData(BaseModel):
    content: str | None = None
    flags: dict | None = None


class RelayEnvelope(BaseModel):
    action: Literal["updateMessage"] = "updateMessage"
    msgId: str
    data: RelayData
