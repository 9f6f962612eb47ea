"""Chat API — roll dice, read rolls and run +1 / confirm / burn over HTTP."""

from __future__ import annotations

from typing import Annotated, Literal, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request

from app.domain.messages import MessageNotFound
from app.domain.permissions import PermissionDenied
from app.domain.relay import NO_ADMIN_WARNING
from app.domain.runtime import ActorNotFound, ChatRuntime
from app.infra.auth import get_current_user
from app.infra.config import settings
from app.models.db_models import User
from app.models.event import RollPayload
from app.models.result import ActionResult, MessageView

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_runtime(request: Request) -> ChatRuntime:
    return request.app.state.runtime


def raise_http(exc: ValueError) -> NoReturn:
    """Map a domain error onto an HTTP status."""
    if isinstance(exc, (MessageNotFound, ActorNotFound)):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PermissionDenied):
        raise HTTPException(status_code=403, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))


class RollRequest(RollPayload):
    room_id: str = settings.default_room_id


@router.post("/rolls")
async def create_roll(
    req: RollRequest,
    user: Annotated[User, Depends(get_current_user)],
    runtime: Annotated[ChatRuntime, Depends(get_runtime)],
) -> MessageView:
    """Roll a d6 pool into a room. The response carries the evaluated roll."""
    payload = RollPayload.model_validate(req.model_dump(exclude={"room_id"}))
    try:
        message = await runtime.create_roll(user, req.room_id, payload)
    except ValueError as e:
        raise_http(e)
    return runtime.session_for(user, req.room_id).view(message)


@router.get("/rooms/{room_id}/messages")
async def list_messages(
    room_id: str,
    user: Annotated[User, Depends(get_current_user)],
    runtime: Annotated[ChatRuntime, Depends(get_runtime)],
    limit: int = 50,
) -> list[MessageView]:
    session = runtime.session_for(user, room_id)
    views = []
    for summary in await runtime.store.list_room(room_id, limit):
        message = await runtime.store.get(summary.id)
        if message is not None:
            views.append(session.view(message))
    return views


@router.get("/messages/{message_id}")
async def get_message(
    message_id: str,
    user: Annotated[User, Depends(get_current_user)],
    runtime: Annotated[ChatRuntime, Depends(get_runtime)],
) -> MessageView:
    message = await runtime.store.get(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return runtime.session_for(user, message.room_id).view(message)


@router.post("/messages/{message_id}/actions/{action}")
async def apply_action(
    message_id: str,
    action: Literal["buff", "confirm", "burn"],
    user: Annotated[User, Depends(get_current_user)],
    runtime: Annotated[ChatRuntime, Depends(get_runtime)],
) -> ActionResult:
    """Apply +1 (``buff``), ``confirm`` or ``burn`` to a roll as the caller.

    Callers without write authority are relayed through an online admin;
    with no admin online the call fails with 409.
    """
    message = await runtime.store.get(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    session = runtime.session_for(user, message.room_id)
    try:
        result = await session.perform(action, message_id)
    except ValueError as e:
        raise_http(e)
    if result.outcome == "no_authority":
        raise HTTPException(status_code=409, detail=NO_ADMIN_WARNING)
    return result


@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: str,
    user: Annotated[User, Depends(get_current_user)],
    runtime: Annotated[ChatRuntime, Depends(get_runtime)],
) -> dict:
    try:
        await runtime.delete_message(user, message_id)
    except ValueError as e:
        raise_http(e)
    return {"message_id": message_id, "status": "deleted"}
