from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import random
import sys
from typing import Any, Dict, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from blinkchat.core.proto import new_message_id
from blinkchat.server.config import default_client_heartbeat_ms

log = logging.getLogger("blinkchat.cmd.client")

RECONNECT_DELAY_S = 3.0
HEARTBEAT_INTERVAL_S = 25.0
SWEEP_INTERVAL_MS = 30_000

ADJECTIVES = [
    "Swift", "Brave", "Clever", "Daring", "Eager", "Fierce", "Gentle", "Happy",
    "Jolly", "Kind", "Lively", "Mighty", "Noble", "Polite", "Quick", "Rapid",
    "Silent", "Tough", "Witty", "Zealous", "Calm", "Proud", "Wise", "Agile",
]
ANIMALS = [
    "Fox", "Bear", "Wolf", "Eagle", "Hawk", "Lion", "Tiger", "Panda", "Koala",
    "Deer", "Owl", "Seal", "Whale", "Shark", "Lynx", "Raven", "Cobra", "Falcon",
    "Gecko", "Hare", "Ibex", "Jaguar", "Kiwi", "Lemur", "Moose", "Otter",
]

HELP = "Commands: /next, /reply <id> <msg>, /edit <id> <msg>, /delete <id>, /typing, /quit"


# ---------------------------------------------------------------------------
# Frame helpers
# ---------------------------------------------------------------------------

def heartbeat_period_s(heartbeat_ms: int | None, sweep_ms: int = SWEEP_INTERVAL_MS) -> float:
    """Seconds between heartbeats; must stay below the server's sweep interval."""

    if heartbeat_ms is None:
        heartbeat_ms = default_client_heartbeat_ms(sweep_ms)
    if not 0 < heartbeat_ms < sweep_ms:
        raise ValueError(f"heartbeat interval {heartbeat_ms} ms must be positive and below the sweep interval {sweep_ms} ms")
    return heartbeat_ms / 1000


def generate_nickname(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    return f"{rng.choice(ADJECTIVES)}{rng.choice(ANIMALS)}#{rng.randrange(100):02d}"


def chat_frame(text: str, nickname: str, reply_to: str | None = None) -> Dict[str, Any]:
    frame = {"type": "chat", "messageId": new_message_id("msg"), "message": text, "nickname": nickname}
    if reply_to:
        frame["replyTo"] = reply_to
    return frame


def edit_frame(message_id: str, text: str, nickname: str) -> Dict[str, Any]:
    return {"type": "edit", "messageId": message_id, "message": text, "nickname": nickname}


def delete_frame(message_id: str, nickname: str) -> Dict[str, Any]:
    return {"type": "delete", "messageId": message_id, "nickname": nickname}


def format_event(frame: Dict[str, Any]) -> Optional[str]:
    """Human-readable line for a server event, or None if nothing to show."""

    typ = frame.get("type")
    who = frame.get("nickname") or "Stranger"
    if typ == "connected":
        return f"* connected as {frame.get('clientId')}"
    if typ == "waiting":
        return "* waiting for a partner..."
    if typ == "matched":
        return "* connected with a partner, say hi!"
    if typ == "partner-left":
        return "* your partner has disconnected"
    if typ == "chat":
        reply = f" (reply to {frame['replyTo']})" if frame.get("replyTo") else ""
        return f"[{frame.get('messageId')}] {who}{reply}: {frame.get('message')}"
    if typ == "typing":
        return f"* {who} is typing..."
    if typ == "edit":
        return f"[{frame.get('messageId')}] {who} (edited): {frame.get('message')}"
    if typ == "delete":
        return f"[{frame.get('messageId')}] {who} deleted a message"
    if typ == "error":
        details = f" ({frame['details']})" if frame.get("details") else ""
        return f"! {frame.get('message')}{details}"
    return None


# ---------------------------------------------------------------------------
# Terminal client
# ---------------------------------------------------------------------------

class ClientApp:
    def __init__(self, server_url: str, nickname: str, heartbeat_s: float = HEARTBEAT_INTERVAL_S) -> None:
        self.server_url = server_url
        self.nickname = nickname
        self.heartbeat_s = heartbeat_s

        self.ws: Optional[ClientConnection] = None
        self.client_id: Optional[str] = None
        self.matched = False
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        commands = asyncio.create_task(self._command_loop())
        try:
            while not self.stop_event.is_set():
                try:
                    await self._session()
                except (OSError, websockets.WebSocketException) as exc:
                    log.warning("Connection to %s failed: %s", self.server_url, exc)
                if self.stop_event.is_set():
                    break
                print(f"* disconnected, reconnecting in {RECONNECT_DELAY_S:.0f}s")
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self.stop_event.wait(), RECONNECT_DELAY_S)
        finally:
            commands.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await commands

    async def _session(self) -> None:
        async with connect(self.server_url) as ws:
            self.ws = ws
            heartbeat = asyncio.create_task(self._heartbeat_loop(ws))
            try:
                async for raw in ws:
                    await self._handle_incoming(raw)
            finally:
                heartbeat.cancel()
                self.ws = None
                self.matched = False

    async def _heartbeat_loop(self, ws: ClientConnection) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_s)
            try:
                await ws.send(json.dumps({"type": "heartbeat"}))
            except websockets.ConnectionClosed:
                return

    async def _handle_incoming(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            log.warning("Dropped invalid frame: %r", raw)
            return
        typ = frame.get("type")
        if typ == "connected":
            self.client_id = frame.get("clientId")
        elif typ == "matched":
            self.matched = True
        elif typ == "partner-left":
            self.matched = False

        line = format_event(frame)
        if line:
            print(line)

        if typ == "partner-left":
            await self._send({"type": "queue"})

    async def _command_loop(self) -> None:
        loop = asyncio.get_running_loop()
        print(f"BlinkChat as {self.nickname}. {HELP}")
        while not self.stop_event.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if line:
                await self._handle_command(line)
        self.stop_event.set()
        if self.ws is not None:
            await self.ws.close()

    async def _handle_command(self, line: str) -> None:
        if not line.startswith("/"):
            await self._say(line)
            return
        parts = line.split(" ", 2)
        cmd = parts[0]
        if cmd == "/next":
            await self._send({"type": "queue"})
        elif cmd == "/reply" and len(parts) == 3:
            await self._say(parts[2], reply_to=parts[1])
        elif cmd == "/edit" and len(parts) == 3:
            await self._send(edit_frame(parts[1], parts[2], self.nickname))
        elif cmd == "/delete" and len(parts) >= 2:
            await self._send(delete_frame(parts[1], self.nickname))
        elif cmd == "/typing":
            await self._send({"type": "typing", "nickname": self.nickname})
        elif cmd in {"/quit", "/exit"}:
            self.stop_event.set()
        else:
            print(HELP)

    async def _say(self, text: str, reply_to: str | None = None) -> None:
        if not self.matched:
            print("* not connected to a partner yet")
            return
        frame = chat_frame(text, self.nickname, reply_to)
        if await self._send(frame):
            print(format_event({**frame, "nickname": f"{self.nickname} (you)"}))

    async def _send(self, frame: Dict[str, Any]) -> bool:
        if self.ws is None:
            print("* not connected")
            return False
        try:
            await self.ws.send(json.dumps(frame, separators=(",", ":")))
        except websockets.ConnectionClosed:
            return False
        return True


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="BlinkChat terminal client")
    parser.add_argument("--url", default="ws://localhost:3000", help="ws://host:port of the BlinkChat server")
    parser.add_argument("--nickname", default=None, help="Display name (random if omitted)")
    parser.add_argument("--heartbeat-ms", type=int, default=None, help="Heartbeat interval in ms (default: 25000, capped below the sweep)")
    parser.add_argument("--sweep-ms", type=int, default=SWEEP_INTERVAL_MS, help="Server liveness sweep interval in ms")
    args = parser.parse_args(argv)

    try:
        heartbeat_s = heartbeat_period_s(args.heartbeat_ms, args.sweep_ms)
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = ClientApp(args.url, args.nickname or generate_nickname(), heartbeat_s=heartbeat_s)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
