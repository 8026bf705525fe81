import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import sessionmaker

from config.database import get_session_factory
from config.logging import get_logger
from config.settings import get_settings
from core.dependencies import get_realtime_hub
from models.user import User
from services.realtime import RealtimeHub, join_rooms

router = APIRouter()
logger = get_logger("realtime")
settings = get_settings()


def _frame(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data}, default=str)


async def handle_join(websocket: WebSocket, hub: RealtimeHub, session_factory: sessionmaker, data: Dict[str, Any]):
    """Subscribe the connection to its user, leader and (for admins) admin rooms."""
    try:
        user_id = int(data.get("userId"))
    except (TypeError, ValueError):
        await websocket.send_text(_frame("error", {"message": "join requires a userId"}))
        return

    # Short-lived session: the socket may stay open for hours
    with session_factory() as db:
        user = db.get(User, user_id)
        rooms = join_rooms(user.id, user.role, user.assigned_to_leader) if user is not None else None
    if rooms is None:
        await websocket.send_text(_frame("error", {"message": "Unknown user"}))
        return

    await hub.join(websocket, rooms)
    await websocket.send_text(_frame("joined", {"rooms": sorted(rooms)}))
    logger.info(f"User {user_id} joined rooms {sorted(rooms)}")


@router.websocket(settings.WEBSOCKET_PATH)
async def realtime_endpoint(
    websocket: WebSocket,
    session_factory: sessionmaker = Depends(get_session_factory),
    hub: RealtimeHub = Depends(get_realtime_hub)
):
    """
    Client frames are {"event": ..., "data": ...}; "join" subscribes rooms
    and "ping" is answered with "pong".
    """
    await hub.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_text(_frame("error", {"message": "Frames must be JSON"}))
                continue
            if not isinstance(message, dict):
                continue

            event = message.get("event")
            data = message.get("data") or {}
            if event == "join" and isinstance(data, dict):
                await handle_join(websocket, hub, session_factory, data)
            elif event == "ping":
                await websocket.send_text(_frame("pong", data))
            else:
                logger.debug(f"Ignoring WebSocket event {event!r}")

    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(websocket)
