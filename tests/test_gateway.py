import asyncio
import json
import zlib

import pytest

from tapioca import errors
from tapioca.dispatch import DispatchRouter
from tapioca.gateway import GatewayWebSocket, IdentifyLimiter, OpCode, SessionState
from tapioca.utils import ExponentialBackoff

from conftest import READY, FakeGateway

pytestmark = pytest.mark.asyncio


async def ready(ws: GatewayWebSocket, socket, seq: int = 1) -> None:
    socket.dispatch("READY", READY, seq)
    await ws.poll_event()


async def test_identify(make_ws, handshake):
    ws = make_ws(intents=513, shard_id=1, shard_count=2)
    socket = await handshake(ws)

    identify = await socket.expect(OpCode.IDENTIFY)

    assert identify["s"] is None and identify["t"] is None
    assert identify["d"]["token"] == "test-token"
    assert identify["d"]["intents"] == 513
    assert identify["d"]["shard"] == [1, 2]
    assert identify["d"]["properties"]["browser"] == "tapioca"
    assert ws.state is SessionState.IDENTIFYING
    assert ws.session.heartbeat_interval_ms == 41250


async def test_gateway_url(gateway):
    ws = GatewayWebSocket("token", url="wss://gateway.example/?v=6", compress=True, http_session=gateway)

    assert ws.gateway_url() == "wss://gateway.example/?v=10&encoding=json&compress=zlib-stream"
    assert ws.gateway_url("wss://resume.example").startswith("wss://resume.example/?")


async def test_invalid_shard_arguments():
    with pytest.raises(ValueError):
        GatewayWebSocket("token", shard_id=2, shard_count=2)

    with pytest.raises(ValueError):
        GatewayWebSocket("", shard_id=0, shard_count=1)


async def test_ready(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket)

    assert ws.is_ready()
    assert ws.session.session_id == "abc123"
    assert ws.session.resume_url == "wss://resume.example"
    assert ws.session.sequence.current() == 1
    assert ws.session.can_resume()


async def test_ready_without_session_id_is_a_decode_error(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)

    socket.dispatch("READY", {"v": 10}, 1)

    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.resume is False
    assert socket.client_close_code == 1011


async def test_resume_after_transport_drop(make_ws, gateway, eventually):
    received = []
    ws = make_ws(dispatcher=lambda name, data, shard_id: received.append((name, data)))
    task = asyncio.ensure_future(ws.run())

    socket = await gateway.next_socket()
    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.IDENTIFY)

    socket.dispatch("READY", READY, 1)
    socket.dispatch("MESSAGE_CREATE", {"id": "10"}, 2)
    socket.dispatch("MESSAGE_CREATE", {"id": "11"}, 3)
    socket.drop(1006)

    socket = await gateway.next_socket()
    assert gateway.urls[-1].startswith("wss://resume.example/?")

    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    resume = await socket.expect(OpCode.RESUME)
    assert resume["d"] == {"token": "test-token", "session_id": "abc123", "seq": 3}
    assert OpCode.IDENTIFY not in socket.sent_ops()

    socket.dispatch("MESSAGE_CREATE", {"id": "12"}, 4)
    socket.dispatch("RESUMED", None, 4)
    await eventually(lambda: len(received) == 5)

    assert ws.is_ready()
    assert ws.session.sequence.current() == 4
    assert [name for name, _ in received] == [
        "READY", "MESSAGE_CREATE", "MESSAGE_CREATE", "MESSAGE_CREATE", "RESUMED",
    ]

    await ws.shutdown()
    await asyncio.wait_for(task, 1.0)

    assert ws.state is SessionState.CLOSED
    assert socket.client_close_code == 1000


class CountingBackoff(ExponentialBackoff):
    def __init__(self) -> None:
        super().__init__(0.001, 0.001)
        self.delays = 0
        self.resets = 0

    def delay(self) -> float:
        self.delays += 1
        return super().delay()

    def reset(self) -> None:
        self.resets += 1
        super().reset()


async def test_drop_soon_after_ready_backs_off(make_ws, gateway, eventually):
    backoff = CountingBackoff()
    ws = make_ws(backoff=backoff)
    task = asyncio.ensure_future(ws.run())

    socket = await gateway.next_socket()
    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.IDENTIFY)
    socket.dispatch("READY", READY, 1)
    socket.drop(1006)

    socket = await gateway.next_socket()
    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.RESUME)
    socket.dispatch("RESUMED", None, 2)
    socket.drop(1006)

    socket = await gateway.next_socket()
    assert backoff.delays == 2
    assert backoff.resets == 0

    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.RESUME)
    socket.dispatch("RESUMED", None, 3)
    await eventually(ws.is_ready)

    await ws.shutdown()
    await asyncio.wait_for(task, 1.0)


async def test_drop_after_a_stable_connection_resets_backoff(make_ws, gateway, eventually, monkeypatch):
    monkeypatch.setattr("tapioca.gateway.core.STABLE_CONNECTION", 0.0)
    backoff = CountingBackoff()
    ws = make_ws(backoff=backoff)
    task = asyncio.ensure_future(ws.run())

    socket = await gateway.next_socket()
    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.IDENTIFY)
    socket.dispatch("READY", READY, 1)
    socket.drop(1006)

    socket = await gateway.next_socket()
    assert backoff.resets == 1
    assert backoff.delays == 0

    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.RESUME)
    socket.dispatch("RESUMED", None, 2)
    await eventually(ws.is_ready)

    await ws.shutdown()
    await asyncio.wait_for(task, 1.0)


async def test_late_sequence_is_ignored(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket, seq=5)

    socket.dispatch("MESSAGE_CREATE", {"id": "1"}, 3)
    await ws.poll_event()

    assert ws.session.sequence.current() == 5


async def test_invalid_session_resumable(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket, seq=7)

    socket.push(OpCode.INVALID_SESSION, True)
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.resume is True
    assert socket.client_close_code == 4000

    socket = await handshake(ws)
    resume = await socket.expect(OpCode.RESUME)
    assert resume["d"]["session_id"] == "abc123"
    assert resume["d"]["seq"] == 7
    assert ws.state is SessionState.RESUMING


async def test_invalid_session_not_resumable(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket, seq=7)

    socket.push(OpCode.INVALID_SESSION, False)
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.resume is False
    assert 1 <= info.value.delay <= 5
    assert ws.session.session_id is None
    assert ws.session.sequence.current() is None
    assert socket.client_close_code == 1000

    socket = await handshake(ws)
    await socket.expect(OpCode.IDENTIFY)
    assert OpCode.RESUME not in socket.sent_ops()


async def test_reconnect_request(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket, seq=2)

    socket.push(OpCode.RECONNECT)
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.resume is True
    assert socket.client_close_code == 4000
    assert ws.session.session_id == "abc123"


@pytest.mark.parametrize("code, resume", [
    (4000, True),
    (4008, True),
    (1006, True),
    (4007, False),
    (4009, True),
    (4003, False),
])
async def test_recoverable_close(make_ws, handshake, code, resume):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket)

    socket.server_close(code, "bye")
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.code == code
    assert info.value.resume is resume
    assert ws.session.can_resume() is resume


@pytest.mark.parametrize("code", [4004, 4010, 4011, 4012, 4013, 4014])
async def test_fatal_close_stops_run(make_ws, gateway, code):
    ws = make_ws()
    task = asyncio.ensure_future(ws.run())

    socket = await gateway.next_socket()
    socket.push(OpCode.HELLO, {"heartbeat_interval": 41250})
    await socket.expect(OpCode.IDENTIFY)
    socket.server_close(code, "nope")

    with pytest.raises(errors.ConfigurationError) as info:
        await asyncio.wait_for(task, 1.0)

    assert info.value.code == code
    assert len(gateway.urls) == 1
    assert ws.state is SessionState.CLOSED


@pytest.mark.parametrize("frame", [
    "not json",
    json.dumps({"op": 99, "d": None}),
    json.dumps({"op": 0, "d": {}, "s": None, "t": "MESSAGE_CREATE"}),
    json.dumps({"op": 11, "d": None, "s": 4, "t": None}),
    json.dumps([1, 2, 3]),
])
async def test_undecodable_frame(make_ws, handshake, frame):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket)

    socket.push_raw(frame)
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await ws.poll_event()

    assert info.value.resume is False
    assert info.value.code == 1011
    assert socket.client_close_code == 1011
    assert ws.session.session_id is None


async def test_malformed_event_body_is_dropped(make_ws, handshake):
    ws = make_ws(dispatcher=DispatchRouter())
    socket = await handshake(ws)
    await ready(ws, socket)

    socket.dispatch("MESSAGE_CREATE", {"content": "no ids"}, 2)
    await ws.poll_event()

    assert not socket.closed
    assert ws.session.sequence.current() == 2


async def test_heartbeat_request_is_answered(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket, seq=3)

    socket.push(OpCode.HEARTBEAT)
    await ws.poll_event()

    heartbeat = await socket.expect(OpCode.HEARTBEAT)
    assert heartbeat["d"] == 3
    assert ws.latency is None

    socket.push(OpCode.HEARTBEAT_ACK)
    await ws.poll_event()

    assert ws.latency is not None
    assert ws.session.last_heartbeat_acked


async def test_zombied_connection(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws, interval=50)
    await ready(ws, socket)

    # the server never acks
    with pytest.raises(errors.ReconnectWebSocket) as info:
        await asyncio.wait_for(ws.poll_event(), 1.0)

    assert info.value.resume is True
    assert socket.client_close_code == 4000
    assert socket.sent_ops().count(OpCode.HEARTBEAT) == 1
    assert ws.keep_alive is None


async def test_hello_timeout(make_ws, gateway):
    ws = make_ws(hello_timeout=0.05)

    with pytest.raises(errors.ReconnectWebSocket):
        await ws.connect()

    socket = await gateway.next_socket()
    assert socket.client_close_code == 4000
    assert socket.payloads == []


async def test_identify_waits_for_the_limiter(make_ws, gateway):
    limiter = IdentifyLimiter(total=1, remaining=0, reset_after=5000)
    ws = make_ws(limiter=limiter)

    task = asyncio.ensure_future(ws.connect())
    await asyncio.sleep(0.05)

    # nothing was opened, so no heartbeat can go unanswered
    assert gateway.urls == []

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def test_session_failed(make_ws, gateway):
    gateway.refuse = True
    ws = make_ws(max_retries=3, backoff=ExponentialBackoff(0.001, 0.001))

    with pytest.raises(errors.SessionFailed) as info:
        await asyncio.wait_for(ws.run(), 1.0)

    assert info.value.attempts == 3
    assert len(gateway.urls) == 3


async def test_zlib_stream(make_ws, handshake):
    ws = make_ws(compress=True)
    socket = await handshake(ws)

    compressor = zlib.compressobj()
    frame = json.dumps({"op": 0, "d": READY, "s": 1, "t": "READY"}).encode()
    data = compressor.compress(frame) + compressor.flush(zlib.Z_SYNC_FLUSH)

    socket.push_raw(data[:10])
    socket.push_raw(data[10:])

    await ws.poll_event()
    assert not ws.is_ready()

    await ws.poll_event()
    assert ws.is_ready()
    assert ws.session.session_id == "abc123"


async def test_msgpack_encoding(handshake):
    gateway = FakeGateway("msgpack")
    ws = GatewayWebSocket("test-token", encoding="msgpack", http_session=gateway)
    socket = await handshake(ws)

    identify = await socket.expect(OpCode.IDENTIFY)
    assert identify["d"]["token"] == "test-token"
    assert "encoding=msgpack" in gateway.urls[0]

    await ready(ws, socket)
    assert ws.session.session_id == "abc123"

    await ws.close()


async def test_send_requires_a_connection(make_ws):
    ws = make_ws()

    with pytest.raises(ConnectionResetError):
        await ws.change_presence(status="idle")


async def test_commands(make_ws, handshake):
    ws = make_ws()
    socket = await handshake(ws)
    await ready(ws, socket)

    await ws.change_presence(status="dnd", activities=[{"name": "tests", "type": 0}])
    presence = await socket.expect(OpCode.PRESENCE_UPDATE)
    assert presence["d"] == {
        "since": None,
        "activities": [{"name": "tests", "type": 0}],
        "status": "dnd",
        "afk": False,
    }
    assert ws.presence["status"] == "dnd"

    await ws.update_voice_state(41771983423143937, None, self_mute=True)
    voice = await socket.expect(OpCode.VOICE_STATE_UPDATE)
    assert voice["d"] == {
        "guild_id": "41771983423143937",
        "channel_id": None,
        "self_mute": True,
        "self_deaf": False,
    }

    await ws.request_guild_members(41771983423143937, user_ids=[1, 2], nonce="n")
    members = await socket.expect(OpCode.REQUEST_GUILD_MEMBERS)
    assert members["d"] == {
        "guild_id": "41771983423143937",
        "limit": 0,
        "user_ids": ["1", "2"],
        "nonce": "n",
    }
