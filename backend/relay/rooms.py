"""
Room router - tracks which sessions are interested in which documents.

A room is keyed by document id and holds the ids of the sessions that joined
it. The reverse index (session -> rooms) lets a disconnect clean up every
membership without scanning all rooms.
"""

import logging
from typing import Dict, Set, List

logger = logging.getLogger(__name__)


class RoomRouter:
    """
    In-memory room membership.

    Rooms are created lazily on the first join and dropped as soon as the
    last member leaves. Any string is accepted as a document id.
    """

    def __init__(self):
        # Track active rooms: document_id -> set of session_ids
        self._rooms: Dict[str, Set[str]] = {}
        # Reverse index: session_id -> set of document_ids
        self._memberships: Dict[str, Set[str]] = {}

    def join(self, session_id: str, document_id: str) -> None:
        """Add a session to a room. Joining twice is a no-op."""
        if document_id not in self._rooms:
            self._rooms[document_id] = set()
        self._rooms[document_id].add(session_id)

        if session_id not in self._memberships:
            self._memberships[session_id] = set()
        self._memberships[session_id].add(document_id)

        logger.info(f"Room {document_id}: {len(self._rooms[document_id])} active sessions")

    def leave(self, session_id: str, document_id: str) -> None:
        """Remove a session from a room if it is a member."""
        if document_id in self._rooms:
            self._rooms[document_id].discard(session_id)
            if not self._rooms[document_id]:
                del self._rooms[document_id]
                logger.info(f"Room {document_id}: no active sessions, room closed")
            else:
                logger.info(f"Room {document_id}: {len(self._rooms[document_id])} active sessions")

        if session_id in self._memberships:
            self._memberships[session_id].discard(document_id)
            if not self._memberships[session_id]:
                del self._memberships[session_id]

    def on_disconnect(self, session_id: str) -> List[str]:
        """
        Remove a session from every room it belonged to.

        Returns:
            The document ids the session was removed from
        """
        rooms = sorted(self._memberships.get(session_id, set()))
        for document_id in rooms:
            self.leave(session_id, document_id)
        return rooms

    def members(self, document_id: str) -> Set[str]:
        """Get session ids in a room."""
        return self._rooms.get(document_id, set()).copy()

    def peers(self, document_id: str, exclude: str) -> Set[str]:
        """Get session ids in a room, minus the given session."""
        return self.members(document_id) - {exclude}

    def rooms_of(self, session_id: str) -> Set[str]:
        """Get document ids a session has joined."""
        return self._memberships.get(session_id, set()).copy()

    def active_rooms(self) -> Dict[str, int]:
        """Get all active rooms with their member counts."""
        return {room: len(members) for room, members in self._rooms.items()}

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._rooms
