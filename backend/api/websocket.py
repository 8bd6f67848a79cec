"""
WebSocket endpoint for the live code relay.

One connection per session. Each frame is decoded and handled to completion
before the next one is read, which keeps per-session ordering intact.
"""

import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from relay import manager as relay_module

logger = logging.getLogger(__name__)


async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint handler."""
    relay_manager = relay_module.relay_manager
    if relay_manager is None:
        await websocket.close(code=1011, reason="Server not ready")
        return

    user_id = websocket.query_params.get("userId")
    session_id = await relay_manager.connect(websocket, user_id)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))

            data = frame.get("text")
            if data is None:
                # Binary frames carry the same JSON, UTF-8 encoded
                try:
                    data = (frame.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError:
                    await relay_manager.send_message(session_id, {
                        "type": "error",
                        "message": "Binary frames must be UTF-8 encoded JSON"
                    })
                    continue

            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await relay_manager.send_message(session_id, {
                    "type": "error",
                    "message": "Invalid JSON format"
                })
                continue

            response = await relay_manager.handle_message(session_id, message_data)
            if response is not None:
                await relay_manager.send_message(session_id, response)

    except WebSocketDisconnect:
        relay_manager.disconnect(session_id)
    except Exception as e:
        logger.exception(f"Error in relay connection for {session_id}: {e}")
        relay_manager.disconnect(session_id)
