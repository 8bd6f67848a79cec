"""
Relay Manager - routes editor traffic between sessions in a document room.

Handles:
- Session connections (one WebSocket per session)
- Room membership (join/leave/disconnect)
- Content changes: update the execution snapshot and fan out to peers
- Presence (cursor/selection): fan out to peers, nothing stored
- Run requests: execute the snapshot and reply to the requester only

All state is owned by a single asyncio loop; handlers never await between
reading and writing the room and snapshot maps, so no locks are needed.
"""

import asyncio
import json
import logging
import uuid
from typing import Dict, Any, Optional, Set

from fastapi import WebSocket

from execution import ExecutionEngine, RunResult
from .messages import (
    MessageError,
    parse_message,
    JoinDocument,
    LeaveDocument,
    CodeChange,
    CursorUpdate,
    RunCode,
)
from .rooms import RoomRouter
from .store import SnapshotStore

logger = logging.getLogger(__name__)


class RelayManager:
    """
    Manages relay sessions and document rooms.

    Features:
    - Broadcasts never reach their own sender
    - Last code_change observed by the server wins the snapshot slot
    - Run output is delivered to the requesting session only
    """

    def __init__(self, engine: ExecutionEngine, stream_run_output: bool = False):
        self.engine = engine
        self.stream_run_output = stream_run_output
        self.rooms = RoomRouter()
        self.snapshots = SnapshotStore()

        # WebSocket connections: session_id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}

        # In-flight run tasks (kept referenced until done)
        self._run_tasks: Set[asyncio.Task] = set()

    # ─────────────────────────────────────────────────────────────────────────
    # Connection Management
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self, websocket: WebSocket, user_id: Optional[str] = None) -> str:
        """Accept a WebSocket, register a session and tell the client its id."""
        await websocket.accept()

        session_id = uuid.uuid4().hex
        self.connections[session_id] = websocket
        logger.info(f"A user connected: {session_id} (user={user_id or 'anonymous'})")

        await self.send_message(session_id, {"type": "connected", "sessionId": session_id})
        return session_id

    def disconnect(self, session_id: str) -> None:
        """Drop a session and its room memberships. In-flight runs keep going."""
        # Memberships are cleared even when a failed send already dropped the connection
        self.connections.pop(session_id, None)
        rooms = self.rooms.on_disconnect(session_id)
        logger.info(f"User disconnected: {session_id} (left {len(rooms)} rooms)")

    async def send_message(self, session_id: str, message: Dict[str, Any]) -> bool:
        """Send message to a specific session. Returns False if it is gone."""
        websocket = self.connections.get(session_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.get('type', 'unknown')} to {session_id}: {e}")
            self.disconnect(session_id)
            return False

    async def broadcast(self, document_id: str, message: Dict[str, Any], exclude: str) -> int:
        """Send message to every session in a room except the sender."""
        delivered = 0
        for peer_id in self.rooms.peers(document_id, exclude=exclude):
            if await self.send_message(peer_id, message):
                delivered += 1
        return delivered

    # ─────────────────────────────────────────────────────────────────────────
    # Message Handling
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_message(self, session_id: str, data: Any) -> Optional[Dict[str, Any]]:
        """
        Validate and dispatch an incoming frame.

        Returns:
            An error message for the sender if the frame is invalid, else None
        """
        if session_id not in self.connections:
            # Dropped after a failed send; frames still buffered are ignored
            logger.debug(f"Ignoring frame from dropped session {session_id}")
            return None

        try:
            message = parse_message(data)
        except MessageError as e:
            logger.warning(f"Rejected message from {session_id}: {e}")
            return {"type": "error", "message": str(e)}

        if message.type == "join_document":
            self.handle_join(session_id, message)
        elif message.type == "leave_document":
            self.handle_leave(session_id, message)
        elif message.type == "code_change":
            await self.handle_code_change(session_id, message)
        elif message.type == "cursor_update":
            await self.handle_cursor_update(session_id, message)
        elif message.type == "run_code":
            self.handle_run_code(session_id, message)
        return None

    def handle_join(self, session_id: str, message: JoinDocument) -> None:
        self.rooms.join(session_id, message.document_id)
        logger.info(f"User {session_id} joined document room: {message.document_id}")

    def handle_leave(self, session_id: str, message: LeaveDocument) -> None:
        self.rooms.leave(session_id, message.document_id)
        logger.info(f"User {session_id} left document: {message.document_id}")

    async def handle_code_change(self, session_id: str, message: CodeChange) -> None:
        """Overwrite the snapshot, then relay the full content to peers."""
        self.snapshots.put(
            message.document_id,
            message.new_content,
            file_name=message.file_name,
            sender_id=message.sender_id,
        )
        logger.info(
            f"Code change in {message.file_name} for {message.document_id} "
            f"from {message.sender_id[:4]}. Content length: {len(message.new_content)}"
        )
        await self.broadcast(message.document_id, {
            "type": "code_change",
            "newContent": message.new_content,
            "senderId": message.sender_id,
            "fileName": message.file_name,
        }, exclude=session_id)

    async def handle_cursor_update(self, session_id: str, message: CursorUpdate) -> None:
        await self.broadcast(message.document_id, {
            "type": "cursor_update",
            "userId": message.user_id,
            "position": message.position,
            "selection": message.selection,
            "fileName": message.file_name,
        }, exclude=session_id)

    def handle_run_code(self, session_id: str, message: RunCode) -> asyncio.Task:
        """
        Start a run in the background so the session keeps relaying.

        The snapshot is read now; edits arriving while the run is queued
        or executing do not affect it.
        """
        content = self.snapshots.content(message.document_id)
        logger.info(f"User {session_id} requested to run code in document {message.document_id}")

        task = asyncio.create_task(self._run_and_report(session_id, message.document_id, content))
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)
        return task

    async def _run_and_report(self, session_id: str, document_id: str, content: Optional[str]) -> RunResult:
        on_chunk = None
        if self.stream_run_output:
            async def on_chunk(stream: str, text: str):
                await self.send_message(session_id, {
                    "type": "code_output_chunk",
                    "documentId": document_id,
                    "stream": stream,
                    "data": text,
                })

        result = await self.engine.run(document_id, content, requester_id=session_id, on_chunk=on_chunk)
        if not await self.send_message(session_id, result.to_message()):
            logger.info(f"Run result for {document_id} dropped: session {session_id} is gone")
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def wait_for_runs(self) -> None:
        """Wait until all in-flight runs have reported."""
        if self._run_tasks:
            await asyncio.gather(*list(self._run_tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight runs (their processes are killed) and drop sessions."""
        for task in list(self._run_tasks):
            task.cancel()
        await self.wait_for_runs()
        for session_id in list(self.connections):
            self.disconnect(session_id)
        logger.info("Relay manager stopped")

    def get_document_info(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Room members and snapshot metadata, or None if the document is unknown."""
        snapshot = self.snapshots.get(document_id)
        if document_id not in self.rooms and snapshot is None:
            return None
        return {
            "document_id": document_id,
            "sessions": sorted(self.rooms.members(document_id)),
            "snapshot": snapshot.to_dict() if snapshot else None,
        }


# Global instance
relay_manager: Optional[RelayManager] = None


def initialize_relay_manager(engine: ExecutionEngine, stream_run_output: bool = False) -> RelayManager:
    """Initialize the global relay manager."""
    global relay_manager
    relay_manager = RelayManager(engine, stream_run_output=stream_run_output)
    return relay_manager
