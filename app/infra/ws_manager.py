"""Connection manager — room membership, presence and named broadcast channels."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Protocol

logger = logging.getLogger("ezd6.ws")


class Peer(Protocol):
    """A connected client as seen by the channel."""

    peer_id: str
    user_id: str
    is_admin: bool

    async def receive(self, channel: str, payload: dict) -> None: ...


class ConnectionManager:
    """Manages connected peers grouped by room id, in join order."""

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, Peer]] = defaultdict(dict)

    def join(self, room_id: str, peer: Peer) -> None:
        self._rooms[room_id][peer.peer_id] = peer
        logger.debug("Peer %s (user %s) joined room %s", peer.peer_id, peer.user_id, room_id)

    def leave(self, room_id: str, peer_id: str) -> None:
        self._rooms[room_id].pop(peer_id, None)
        if not self._rooms[room_id]:
            del self._rooms[room_id]

    def peers(self, room_id: str) -> list[Peer]:
        return list(self._rooms.get(room_id, {}).values())

    def get_connected_users(self, room_id: str) -> list[str]:
        seen: dict[str, None] = {}
        for peer in self.peers(room_id):
            seen.setdefault(peer.user_id, None)
        return list(seen)

    def first_online_admin(self, room_id: str) -> Peer | None:
        """The earliest-joined admin peer still connected to ``room_id``."""
        return next((p for p in self.peers(room_id) if p.is_admin), None)

    async def send(self, room_id: str, peer: Peer, channel: str, payload: dict) -> bool:
        try:
            await peer.receive(channel, payload)
        except Exception:
            logger.warning("Dropping peer %s after failed delivery", peer.peer_id, exc_info=True)
            self.leave(room_id, peer.peer_id)
            return False
        return True

    async def broadcast(self, room_id: str, channel: str, payload: dict) -> None:
        """Send ``payload`` on ``channel`` to every peer in a room."""
        for peer in self.peers(room_id):
            await self.send(room_id, peer, channel, payload)
