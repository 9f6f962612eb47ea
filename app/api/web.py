"""Web API — WebSocket chat sessions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.domain.runtime import ChatRuntime
from app.domain.session import ClientSession
from app.infra.auth import decode_access_token
from app.models.event import ClientEvent, DeletePayload, RollPayload

logger = logging.getLogger("ezd6.web")

router = APIRouter(prefix="/api/web", tags=["web"])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "message": "Web API active."}


async def handle_event(runtime: ChatRuntime, session: ClientSession, event: ClientEvent) -> dict:
    payload = event.payload
    if isinstance(payload, RollPayload):
        message = await runtime.create_roll(session.viewer, session.room_id, payload)
        return {"success": True, "action": "roll", "message_id": message.id}
    if isinstance(payload, DeletePayload):
        await runtime.delete_message(session.viewer, payload.message_id)
        return {"success": True, "action": "delete", "message_id": payload.message_id}
    result = await session.perform(payload.action, payload.message_id)
    return result.model_dump()


@router.websocket("/ws/{room_id}")
async def websocket_room(websocket: WebSocket, room_id: str) -> None:
    """WebSocket endpoint for one client's live view of a chat room.

    Connect with: ws://host/api/web/ws/{room_id}?token=<jwt_token>

    On connect: authenticates via query param token, replays recent history.
    Receives: JSON actions ``{"action": "roll" | "buff" | "confirm" | "burn" | "delete", ...}``.
    Sends: ``render`` / ``remove`` / ``notification`` / ``scroll`` frames, and a
    ``result`` frame answering each action.
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    try:
        token_data = decode_access_token(token)
    except Exception:
        await websocket.close(code=4001, reason="Invalid token")
        return

    runtime: ChatRuntime = websocket.app.state.runtime
    viewer = await runtime.store.get_user(token_data.user_id)
    if viewer is None or not viewer.is_active:
        await websocket.close(code=4003, reason="Unknown or inactive user")
        return

    await websocket.accept()
    session = await runtime.connect(viewer, room_id, websocket.send_json)
    try:
        await session.replay()
        while True:
            data = await websocket.receive_json()
            try:
                event = ClientEvent(payload=data)
                result = await handle_event(runtime, session, event)
            except ValidationError as exc:
                result = {"success": False, "error": f"Invalid action: {exc.error_count()} error(s)"}
            except Exception as exc:
                logger.debug("Action failed for user %s: %s", viewer.id, exc)
                result = {"success": False, "error": str(exc)}
            await websocket.send_json({"type": "result", **result})
    except WebSocketDisconnect:
        pass
    finally:
        runtime.disconnect(session)
