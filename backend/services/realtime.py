"""
Realtime fan-out over WebSockets.

Connections join named rooms (user:<id>, leader:<id>, admins). An event is
published once to a set of rooms; a connection that sits in several of those
rooms still receives it exactly once.
"""
import asyncio
import json
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from fastapi import WebSocket

from config.logging import get_logger

logger = get_logger("realtime")

ADMINS_ROOM = "admins"


class EventKind(str, Enum):
    NEW_ORDER = "newOrder"
    ORDER_UPDATE = "orderUpdate"
    DELETE_ORDER = "deleteOrder"
    NOTIFICATION = "notification"
    CHANGE_FEED = "changeFeed"


# Kinds whose audience includes every admin connection.
ADMIN_AUDIENCE = frozenset({EventKind.NEW_ORDER, EventKind.ORDER_UPDATE, EventKind.NOTIFICATION})


def user_room(user_id: Any) -> str:
    return f"user:{user_id}"


def leader_room(leader_id: Any) -> str:
    return f"leader:{leader_id}"


def _owners(order: Any) -> Tuple[Any, Any]:
    if isinstance(order, Mapping):
        return order.get("createdBy"), order.get("assignedTo")
    return getattr(order, "created_by", None), getattr(order, "assigned_to", None)


def compute_channels(order: Any, event_kind: EventKind) -> FrozenSet[str]:
    """Rooms an order event must reach. Accepts an Order or its document dict."""
    created_by, assigned_to = _owners(order)
    rooms: Set[str] = set()
    if created_by is not None:
        rooms.add(user_room(created_by))
    if assigned_to is not None:
        rooms.add(user_room(assigned_to))
    if event_kind in ADMIN_AUDIENCE:
        rooms.add(ADMINS_ROOM)
    return frozenset(rooms)


def join_rooms(user_id: Any, role: Optional[str], leader_id: Any = None) -> FrozenSet[str]:
    """Rooms a connection subscribes to on join."""
    rooms = {user_room(user_id)}
    if leader_id is not None:
        rooms.add(leader_room(leader_id))
    if role in ("Admin", "SuperAdmin"):
        rooms.add(ADMINS_ROOM)
    return frozenset(rooms)


class RealtimeHub:
    """
    Process-wide registry of live WebSocket connections and their rooms.
    Holds no order state.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._memberships: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._memberships)

    def members(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection"""
        await websocket.accept()
        async with self._lock:
            self._memberships.setdefault(websocket, set())
        logger.info(f"WebSocket connected (Total: {self.connection_count})")

    async def join(self, websocket: WebSocket, rooms: Iterable[str]):
        async with self._lock:
            joined = self._memberships.setdefault(websocket, set())
            for room in rooms:
                self._rooms[room].add(websocket)
                joined.add(room)
        logger.debug(f"WebSocket joined rooms: {sorted(joined)}")

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection from every room"""
        async with self._lock:
            self._drop(websocket)
        logger.info(f"WebSocket disconnected (Remaining: {self.connection_count})")

    def _drop(self, websocket: WebSocket):
        for room in self._memberships.pop(websocket, set()):
            members = self._rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self._rooms[room]

    async def emit(self, rooms: Iterable[str], event: str, data: Any) -> int:
        """Publish one event to the union of rooms. Returns deliveries made."""
        async with self._lock:
            targets = set()
            for room in set(rooms):
                targets |= self._rooms.get(room, set())
        return await self._send(targets, event, data)

    async def broadcast(self, event: str, data: Any) -> int:
        async with self._lock:
            targets = set(self._memberships)
        return await self._send(targets, event, data)

    async def _send(self, targets: Set[WebSocket], event: str, data: Any) -> int:
        if not targets:
            return 0

        message = json.dumps({"event": event, "data": data}, default=str)
        delivered = 0
        disconnected = set()
        for connection in targets:
            try:
                await connection.send_text(message)
                delivered += 1
            except Exception as e:
                logger.debug(f"Error sending {event} to WebSocket: {e}")
                disconnected.add(connection)

        if disconnected:
            async with self._lock:
                for connection in disconnected:
                    self._drop(connection)
            logger.info(f"Cleaned up {len(disconnected)} disconnected WebSocket(s)")
        return delivered

    async def close(self):
        async with self._lock:
            connections = list(self._memberships)
            self._rooms.clear()
            self._memberships.clear()
        for connection in connections:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")


_hub: Optional[RealtimeHub] = None


def get_hub() -> RealtimeHub:
    """Process-scoped hub; created on first use."""
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub
