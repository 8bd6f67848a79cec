"""Tests for RelayManager fan-out, presence and run routing."""
import json
import sys
from unittest.mock import AsyncMock

import pytest

from execution import ExecutionEngine
from relay import RelayManager
from relay.messages import RunCode


def sent_messages(mock_ws, skip_connected=True):
    """Decode every frame sent to a mock WebSocket."""
    messages = [json.loads(call.args[0]) for call in mock_ws.send_text.call_args_list]
    if skip_connected:
        messages = [m for m in messages if m["type"] != "connected"]
    return messages


def code_change(document_id, content, sender_id, file_name="main.py"):
    return {
        "type": "code_change",
        "documentId": document_id,
        "newContent": content,
        "senderId": sender_id,
        "fileName": file_name,
    }


def cursor_update(document_id, user_id, line, column):
    return {
        "type": "cursor_update",
        "documentId": document_id,
        "fileName": "main.py",
        "userId": user_id,
        "position": {"lineNumber": line, "column": column},
        "selection": None,
    }


class TestRelayManager:
    """Test suite for RelayManager"""

    @pytest.fixture
    def manager(self, scratch_dir):
        engine = ExecutionEngine(python_executable=sys.executable, scratch_dir=str(scratch_dir))
        return RelayManager(engine)

    @pytest.fixture
    def make_session(self, manager):
        """Connect a mock WebSocket and return (session_id, websocket)."""
        async def _make():
            mock_ws = AsyncMock()
            mock_ws.accept = AsyncMock()
            mock_ws.send_text = AsyncMock()
            session_id = await manager.connect(mock_ws)
            return session_id, mock_ws
        return _make

    @pytest.mark.asyncio
    async def test_connect_sends_session_id(self, manager, make_session):
        session_id, ws = await make_session()

        ws.accept.assert_called_once()
        assert session_id in manager.connections
        assert sent_messages(ws, skip_connected=False) == [
            {"type": "connected", "sessionId": session_id}
        ]

    @pytest.mark.asyncio
    async def test_code_change_reaches_peer_not_sender(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})

        await manager.handle_message(x, code_change("p1", "print(1)", x))

        assert sent_messages(y_ws) == [
            {"type": "code_change", "newContent": "print(1)", "senderId": x, "fileName": "main.py"}
        ]
        assert sent_messages(x_ws) == []
        assert manager.snapshots.content("p1") == "print(1)"

    @pytest.mark.asyncio
    async def test_code_change_stays_in_its_room(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p2"})

        await manager.handle_message(x, code_change("p1", "print(1)", x))

        assert sent_messages(y_ws) == []
        assert manager.snapshots.content("p2") is None

    @pytest.mark.asyncio
    async def test_non_member_sender_still_updates_and_relays(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})

        await manager.handle_message(x, code_change("p1", "print(2)", x))

        assert manager.snapshots.content("p1") == "print(2)"
        assert len(sent_messages(y_ws)) == 1

    @pytest.mark.asyncio
    async def test_last_write_wins(self, manager, make_session):
        x, _ = await make_session()
        y, _ = await make_session()

        await manager.handle_message(x, code_change("p1", "print('x')", x, "a.py"))
        await manager.handle_message(y, code_change("p1", "print('y')", y, "b.py"))

        snapshot = manager.snapshots.get("p1")
        assert snapshot.content == "print('y')"
        assert snapshot.file_name == "b.py"

    @pytest.mark.asyncio
    async def test_leave_stops_delivery(self, manager, make_session):
        x, _ = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "leave_document", "documentId": "p1"})

        await manager.handle_message(x, code_change("p1", "print(1)", x))

        assert sent_messages(y_ws) == []

    @pytest.mark.asyncio
    async def test_cursor_updates_keep_order(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})

        for column in range(1, 6):
            await manager.handle_message(x, cursor_update("p1", x, 1, column))

        received = sent_messages(y_ws)
        assert [m["position"]["column"] for m in received] == [1, 2, 3, 4, 5]
        assert received[0] == {
            "type": "cursor_update",
            "userId": x,
            "position": {"lineNumber": 1, "column": 1},
            "selection": None,
            "fileName": "main.py",
        }
        assert sent_messages(x_ws) == []

    @pytest.mark.asyncio
    async def test_cursor_update_stores_nothing(self, manager, make_session):
        x, _ = await make_session()
        await manager.handle_message(x, cursor_update("p1", x, 1, 1))

        assert manager.snapshots.get("p1") is None

    @pytest.mark.asyncio
    async def test_run_output_goes_to_requester_only(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(x, code_change("p1", "print(1)", x))

        await manager.handle_message(x, {"type": "run_code", "documentId": "p1"})
        await manager.wait_for_runs()

        assert sent_messages(x_ws) == [{"type": "code_output", "output": "1\n", "error": False}]
        assert [m["type"] for m in sent_messages(y_ws)] == ["code_change"]

    @pytest.mark.asyncio
    async def test_run_without_snapshot(self, manager, make_session):
        x, x_ws = await make_session()

        await manager.handle_message(x, {"type": "run_code", "documentId": "p2"})
        await manager.wait_for_runs()

        [reply] = sent_messages(x_ws)
        assert reply["error"] is False
        assert reply["output"].startswith("No code found")

    @pytest.mark.asyncio
    async def test_run_failure_reply(self, manager, make_session):
        x, x_ws = await make_session()
        await manager.handle_message(x, code_change("p1", "import sys; sys.exit(1)", x))

        await manager.handle_message(x, {"type": "run_code", "documentId": "p1"})
        await manager.wait_for_runs()

        [reply] = sent_messages(x_ws)
        assert reply["type"] == "code_output"
        assert reply["error"] is True
        assert reply["output"]

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_cross_deliver(self, manager, make_session):
        x, x_ws = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, code_change("a", "import time; time.sleep(0.2); print('from a')", x))
        await manager.handle_message(y, code_change("b", "print('from b')", y))

        await manager.handle_message(x, {"type": "run_code", "documentId": "a"})
        await manager.handle_message(y, {"type": "run_code", "documentId": "b"})
        await manager.wait_for_runs()

        assert sent_messages(x_ws) == [{"type": "code_output", "output": "from a\n", "error": False}]
        assert sent_messages(y_ws) == [{"type": "code_output", "output": "from b\n", "error": False}]

    @pytest.mark.asyncio
    async def test_run_uses_snapshot_at_trigger_time(self, manager, make_session):
        x, x_ws = await make_session()
        await manager.handle_message(x, code_change("p1", "print('before')", x))

        await manager.handle_message(x, {"type": "run_code", "documentId": "p1"})
        await manager.handle_message(x, code_change("p1", "print('after')", x))
        await manager.wait_for_runs()

        assert sent_messages(x_ws)[-1]["output"] == "before\n"

    @pytest.mark.asyncio
    async def test_disconnect_mid_run_drops_reply(self, manager, make_session):
        x, x_ws = await make_session()
        await manager.handle_message(x, code_change("p1", "import time; time.sleep(0.2); print(1)", x))

        task = manager.handle_run_code(x, RunCode(type="run_code", documentId="p1"))
        manager.disconnect(x)
        result = await task

        assert result.output == "1\n"
        assert sent_messages(x_ws) == []

    @pytest.mark.asyncio
    async def test_streamed_chunks_precede_final_output(self, manager, make_session):
        manager.stream_run_output = True
        x, x_ws = await make_session()
        await manager.handle_message(x, code_change("p1", "print('hi')", x))

        await manager.handle_message(x, {"type": "run_code", "documentId": "p1"})
        await manager.wait_for_runs()

        messages = sent_messages(x_ws)
        chunks = [m for m in messages if m["type"] == "code_output_chunk"]
        assert chunks and all(m["stream"] == "stdout" and m["documentId"] == "p1" for m in chunks)
        assert "".join(m["data"] for m in chunks) == "hi\n"
        assert messages[-1] == {"type": "code_output", "output": "hi\n", "error": False}

    @pytest.mark.asyncio
    async def test_invalid_messages_return_errors(self, manager, make_session):
        x, _ = await make_session()

        unknown = await manager.handle_message(x, {"type": "format_disk"})
        incomplete = await manager.handle_message(x, {"type": "code_change", "documentId": "p1"})
        not_object = await manager.handle_message(x, "join_document")

        assert unknown["type"] == "error"
        assert "Unknown message type" in unknown["message"]
        assert incomplete["type"] == "error"
        assert not_object["type"] == "error"
        assert manager.snapshots.get("p1") is None

    @pytest.mark.asyncio
    async def test_disconnect_cleans_rooms(self, manager, make_session):
        x, _ = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(x, {"type": "join_document", "documentId": "p2"})

        manager.disconnect(x)

        assert x not in manager.connections
        assert manager.rooms.active_rooms() == {}

    @pytest.mark.asyncio
    async def test_failed_send_drops_peer(self, manager, make_session):
        x, _ = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})
        y_ws.send_text.side_effect = RuntimeError("connection closed")

        await manager.handle_message(x, code_change("p1", "print(1)", x))

        assert y not in manager.connections
        assert manager.rooms.members("p1") == {x}

    @pytest.mark.asyncio
    async def test_dropped_peer_leaves_no_room_behind(self, manager, make_session):
        x, _ = await make_session()
        y, y_ws = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(y, {"type": "join_document", "documentId": "p1"})
        y_ws.send_text.side_effect = RuntimeError("connection closed")
        await manager.handle_message(x, code_change("p1", "print(1)", x))

        # Frames the dropped session still had buffered are ignored
        assert await manager.handle_message(y, {"type": "join_document", "documentId": "p2"}) is None
        manager.disconnect(y)

        assert manager.rooms.rooms_of(y) == set()
        assert manager.rooms.active_rooms() == {"p1": 1}

    @pytest.mark.asyncio
    async def test_disconnect_clears_rooms_of_dropped_session(self, manager, make_session):
        x, _ = await make_session()
        manager.connections.pop(x)
        manager.rooms.join(x, "p1")

        manager.disconnect(x)

        assert "p1" not in manager.rooms

    @pytest.mark.asyncio
    async def test_document_info(self, manager, make_session):
        x, _ = await make_session()
        await manager.handle_message(x, {"type": "join_document", "documentId": "p1"})
        await manager.handle_message(x, code_change("p1", "print(1)", x))

        info = manager.get_document_info("p1")

        assert info["sessions"] == [x]
        assert info["snapshot"]["file_name"] == "main.py"
        assert manager.get_document_info("unknown") is None
