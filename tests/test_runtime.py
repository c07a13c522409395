import asyncio
import base64
import contextlib
import json
import logging
import os

import pytest
from websockets.asyncio.client import connect

from blinkchat.server.config import ServerConfig
from blinkchat.server.runtime import Connection, ServerRuntime


@contextlib.asynccontextmanager
async def running_server(**overrides):
    runtime = ServerRuntime(ServerConfig(host="127.0.0.1", port=0, **overrides))
    await runtime.start()
    try:
        yield runtime
    finally:
        await runtime.stop()


async def recv(ws):
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=2))


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_two_clients_pair_chat_and_part():
    async with running_server() as runtime:
        url = f"ws://127.0.0.1:{runtime.bound_port}"
        async with connect(url) as a:
            hello_a = await recv(a)
            assert hello_a["type"] == "connected"
            assert (await recv(a))["type"] == "waiting"

            async with connect(url) as b:
                assert (await recv(b))["type"] == "connected"
                assert (await recv(b))["type"] == "matched"
                assert (await recv(a))["type"] == "matched"

                await a.send(json.dumps({"type": "chat", "message": "hi", "messageId": "m1", "nickname": "N"}))
                chat = await recv(b)
                assert chat == {
                    "type": "chat", "senderId": hello_a["clientId"], "messageId": "m1", "message": "hi", "nickname": "N",
                }

                await b.send(json.dumps({"type": "edit", "message": "no id"}))
                assert (await recv(b))["type"] == "error"

            assert (await recv(a))["type"] == "partner-left"
            await a.send(json.dumps({"type": "queue"}))
            assert (await recv(a))["type"] == "waiting"

        await wait_for(lambda: runtime.hub.snapshot().clients == 0)


@pytest.mark.asyncio
async def test_malformed_frame_gets_error_and_connection_survives():
    async with running_server() as runtime:
        async with connect(f"ws://127.0.0.1:{runtime.bound_port}") as a:
            await recv(a)
            await recv(a)
            await a.send("definitely not json")
            error = await recv(a)
            assert error["message"] == "Failed to process message"
            await a.send(json.dumps({"type": "queue"}))
            assert (await recv(a))["type"] == "waiting"


@pytest.mark.asyncio
async def test_responsive_client_survives_sweeps():
    async with running_server(heartbeat_interval_ms=50, client_heartbeat_ms=20) as runtime:
        async with connect(f"ws://127.0.0.1:{runtime.bound_port}") as a:
            await recv(a)
            await asyncio.sleep(0.4)
            assert runtime.hub.snapshot().clients == 1


@pytest.mark.asyncio
async def test_client_that_never_answers_pings_is_evicted():
    async with running_server(heartbeat_interval_ms=50, client_heartbeat_ms=20) as runtime:
        reader, writer = await asyncio.open_connection("127.0.0.1", runtime.bound_port)
        key = base64.b64encode(os.urandom(16)).decode()
        writer.write((
            "GET / HTTP/1.1\r\nHost: 127.0.0.1\r\nUpgrade: websocket\r\nConnection: Upgrade\r\n"
            f"Sec-WebSocket-Key: {key}\r\nSec-WebSocket-Version: 13\r\n\r\n"
        ).encode())
        await writer.drain()
        status = await asyncio.wait_for(reader.readline(), timeout=2)
        assert status.startswith(b"HTTP/1.1 101")

        await wait_for(lambda: runtime.hub.snapshot().clients == 1)
        await wait_for(lambda: runtime.hub.snapshot().clients == 0, timeout=1.0)
        assert runtime._connections == {}
        writer.close()


class StalledTransport:
    def __init__(self):
        self.aborted = False

    def abort(self):
        self.aborted = True


class StalledSocket:
    remote_address = ("127.0.0.1", 9)

    def __init__(self):
        self.transport = StalledTransport()


@pytest.mark.asyncio
async def test_full_outbox_drops_connection():
    ws = StalledSocket()
    conn = Connection(websocket=ws, outbox=asyncio.Queue(maxsize=2))

    conn.post({"type": "waiting"})
    conn.post({"type": "matched"})
    assert not ws.transport.aborted

    conn.probe()
    assert ws.transport.aborted
    assert conn.outbox.qsize() == 2


class PingSocket(StalledSocket):
    async def ping(self):
        pong = asyncio.get_running_loop().create_future()
        pong.set_result(0.0)
        return pong


@pytest.mark.asyncio
async def test_probe_is_logged_and_pong_reported(caplog):
    caplog.set_level(logging.DEBUG, logger="blinkchat.server.runtime")
    pongs = []
    conn = Connection(websocket=PingSocket(), on_pong=lambda: pongs.append(True))
    writer = asyncio.create_task(conn.pump())

    conn.probe()
    await wait_for(lambda: pongs)
    writer.cancel()
    await asyncio.gather(writer, return_exceptions=True)

    assert "Probe to 127.0.0.1:9" in caplog.text


@pytest.mark.asyncio
async def test_health_endpoint():
    async with running_server() as runtime:
        reader, writer = await asyncio.open_connection("127.0.0.1", runtime.bound_port)
        writer.write(b"GET /healthz HTTP/1.1\r\nHost: localhost\r\n\r\n")
        await writer.drain()
        status = await asyncio.wait_for(reader.readline(), timeout=2)
        writer.close()
        assert status.startswith(b"HTTP/1.1 200")


@pytest.mark.asyncio
async def test_stop_disconnects_clients():
    runtime = ServerRuntime(ServerConfig(host="127.0.0.1", port=0))
    await runtime.start()
    async with connect(f"ws://127.0.0.1:{runtime.bound_port}") as a:
        await recv(a)
        await runtime.stop()
        assert runtime.hub.snapshot().clients == 0
