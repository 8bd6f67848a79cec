#!/usr/bin/env python3
"""
Live Code Relay WebSocket Client
Usage: python relay_client.py <document_id> [server_url]
"""

import asyncio
import websockets
import json
import sys
from pathlib import Path
from threading import Event

class RelayClient:
    def __init__(self, document_id, server_url="ws://localhost:3000/ws"):
        self.document_id = document_id
        self.server_url = server_url
        self.websocket = None
        self.session_id = None
        self.file_name = "main.py"
        self.output_received = Event()

    async def connect(self):
        """Connect to the WebSocket server and join the document room"""
        try:
            self.websocket = await websockets.connect(self.server_url)
            print(f"✅ Connected to {self.server_url}")
        except Exception as e:
            print(f"❌ Connection failed: {e}")
            return False

        await self.send({"type": "join_document", "documentId": self.document_id})
        print(f"📄 Joined document {self.document_id}")
        return True

    async def send(self, message):
        if not self.websocket:
            print("❌ Not connected")
            return
        await self.websocket.send(json.dumps(message))

    async def listen(self):
        """Print messages relayed by the server"""
        try:
            async for raw in self.websocket:
                data = json.loads(raw)
                kind = data.get("type")

                if kind == "connected":
                    self.session_id = data.get("sessionId")
                    print(f"🔑 Session {self.session_id}")

                elif kind == "code_change":
                    sender = (data.get("senderId") or "")[:4]
                    length = len(data.get("newContent") or "")
                    print(f"✏️  {sender} changed {data.get('fileName')} ({length} chars)")

                elif kind == "cursor_update":
                    print(f"👆 {(data.get('userId') or '')[:4]} at {data.get('position')} in {data.get('fileName')}")

                elif kind == "code_output_chunk":
                    print(data.get("data", ""), end="")

                elif kind == "code_output":
                    marker = "❌" if data.get("error") else "▶️"
                    print(f"{marker} Output:\n{data.get('output', '')}")
                    self.output_received.set()

                elif kind == "error":
                    print(f"❌ Error: {data.get('message', '')}")

                else:
                    print(f"📨 {kind}: {str(data)[:100]}")

        except websockets.exceptions.ConnectionClosed:
            print("\n🔌 Connection closed by server")

    async def load_file(self, path):
        """Send a local file as the document's new content"""
        file_path = Path(path)
        try:
            content = file_path.read_text(encoding="utf-8")
        except OSError as e:
            print(f"❌ Could not read {path}: {e}")
            return
        self.file_name = file_path.name
        await self.send({
            "type": "code_change",
            "documentId": self.document_id,
            "newContent": content,
            "senderId": self.session_id or "cli",
            "fileName": self.file_name,
        })
        print(f"📤 Sent {self.file_name} ({len(content)} chars)")

    async def run_code(self):
        """Ask the server to run the document and wait for its output"""
        self.output_received.clear()
        await self.send({"type": "run_code", "documentId": self.document_id})
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.output_received.wait),
                timeout=60.0
            )
        except asyncio.TimeoutError:
            print("⚠️ No output yet - the run may still be in progress")

    async def leave(self):
        await self.send({"type": "leave_document", "documentId": self.document_id})
        print(f"🚪 Left document {self.document_id}")

    async def close(self):
        """Close the connection"""
        if self.websocket:
            await self.websocket.close()
            self.websocket = None
            print("👋 Disconnected")

async def main(document_id, server_url):
    """Main interactive loop"""
    client = RelayClient(document_id, server_url)

    print("🚀 Live Code Relay Client")
    print("=" * 50)
    print("Commands:")
    print("  /load <file> - Send file contents as the document")
    print("  /run         - Run the document on the server")
    print("  /leave       - Leave the document room")
    print("  /quit        - Exit")
    print("=" * 50)

    if not await client.connect():
        return

    listener_task = asyncio.create_task(client.listen())

    try:
        while True:
            try:
                user_input = await asyncio.get_event_loop().run_in_executor(
                    None, lambda: input("\n> ")
                )
                command, _, arg = user_input.strip().partition(" ")

                if command in ['/quit', '/exit']:
                    break
                elif command == '/load' and arg:
                    await client.load_file(arg.strip())
                elif command == '/run':
                    await client.run_code()
                elif command == '/leave':
                    await client.leave()
                elif command:
                    print("Unknown command")

            except KeyboardInterrupt:
                print("\n👋 Goodbye!")
                break
            except EOFError:
                break

    finally:
        listener_task.cancel()
        await client.close()

if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__.strip())
        sys.exit(1)
    url = sys.argv[2] if len(sys.argv) > 2 else "ws://localhost:3000/ws"
    try:
        asyncio.run(main(sys.argv[1], url))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
