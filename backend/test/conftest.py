"""공용 테스트 fixture 및 가짜 객체.

실제 ICE/DTLS 없이 협상 흐름을 검증하기 위해 RTCPeerConnection 대용의
FakePeerConnection과, 두 연결을 이어 주는 FakeNetwork를 제공합니다.
클라이언트끼리는 실제 SignalingRelay + RoomRegistry를 거치는
LoopbackChannel로 연결합니다.
"""

import asyncio
import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest
from aiortc import AudioStreamTrack, RTCIceCandidate, RTCSessionDescription, VideoStreamTrack

from meshcall.client import MeshClient, RemoteRenderer
from meshcall.config import ClientSettings
from meshcall.shared import Envelope
from meshcall.signaling import RoomRegistry, SignalingRelay
from meshcall.webrtc import MediaCapture


# ==================== 시그널링 ====================

class FakeSink:
    """메모리에 메시지를 쌓는 MessageSink."""

    def __init__(self, is_open: bool = True):
        self.is_open = is_open
        self.messages: List[str] = []

    async def send_text(self, data: str) -> None:
        self.messages.append(data)

    def envelopes(self) -> List[Envelope]:
        return [Envelope.from_json(m) for m in self.messages]


class BrokenSink(FakeSink):
    async def send_text(self, data: str) -> None:
        raise ConnectionResetError("peer gone")


class LoopbackChannel:
    """실제 SignalingRelay에 붙는 in-memory 시그널링 채널."""

    def __init__(self, relay: SignalingRelay):
        self.relay = relay
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.is_open = True
        self.connection = relay.connect(self)
        self.sent: List[Envelope] = []

    async def send_text(self, data: str) -> None:
        self.inbox.put_nowait(Envelope.from_json(data))

    async def send(self, envelope: Envelope) -> None:
        self.sent.append(envelope)
        await self.relay.handle_message(self.connection, envelope.to_json())

    async def close(self) -> None:
        if self.is_open:
            self.is_open = False
            await self.relay.disconnect(self.connection)

    async def __aiter__(self):
        while self.is_open or not self.inbox.empty():
            envelope = await self.inbox.get()
            yield envelope


# ==================== 가짜 WebRTC ====================

class FakeEmitter:
    """pyee 스타일 on() 데코레이터와, 핸들러를 await 하는 emit."""

    def __init__(self):
        self._handlers = defaultdict(list)

    def on(self, event, handler=None):
        def register(fn):
            self._handlers[event].append(fn)
            return fn
        return register(handler) if handler is not None else register

    async def emit_async(self, event, *args):
        for handler in list(self._handlers[event]):
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result


@dataclass
class FakeEncodedFrame:
    payloads: List[bytes]
    timestamp: int = 0
    audio_level: Optional[int] = None


class FakeSender:
    """RTCRtpSender 대용. _next_encoded_frame은 고정 payload를 돌려줌."""

    def __init__(self, track, payloads: Optional[List[bytes]] = None):
        self.track = track
        self.kind = track.kind
        self.replaced = []
        self.payloads = payloads or [bytes(range(1, 31)), bytes(range(31, 51))]
        self.frames_produced = 0

    def replaceTrack(self, track) -> None:
        self.track = track
        self.replaced.append(track)

    async def _next_encoded_frame(self, codec=None):
        self.frames_produced += 1
        return FakeEncodedFrame(payloads=list(self.payloads), timestamp=self.frames_produced * 3000)


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str):
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.sent: List[str] = []
        self.remote: Optional["FakeDataChannel"] = None

    def send(self, data) -> None:
        if self.readyState != "open":
            raise RuntimeError("data channel not open")
        self.sent.append(data)
        if self.remote is not None:
            for handler in list(self.remote._handlers["message"]):
                handler(data)


def make_candidate(index: int) -> RTCIceCandidate:
    return RTCIceCandidate(
        component=1,
        foundation=str(index),
        ip=f"192.0.2.{index}",
        port=50000 + index,
        priority=2130706431,
        protocol="udp",
        type="host",
        sdpMid="0",
        sdpMLineIndex=0,
    )


class FakeNetwork:
    """offer/answer SDP 로 FakePeerConnection 쌍을 찾아 연결해 주는 가짜 네트워크."""

    def __init__(self):
        self.connections: Dict[str, "FakePeerConnection"] = {}
        self._ids = itertools.count(1)
        self.emit_candidates = True

    def factory(self):
        pc = FakePeerConnection(self, f"pc{next(self._ids)}")
        self.connections[pc.id] = pc
        return pc

    def peer_of(self, description: RTCSessionDescription) -> Optional["FakePeerConnection"]:
        return self.connections.get(description.sdp.split(":", 1)[1])

    async def link(self, offerer: "FakePeerConnection", answerer: "FakePeerConnection") -> None:
        for local, remote in ((offerer, answerer), (answerer, offerer)):
            local.connectionState = "connected"
            await local.emit_async("connectionstatechange")

        for channel in offerer.channels:
            inbound = FakeDataChannel(channel.label)
            channel.remote, inbound.remote = inbound, channel
            channel.readyState = inbound.readyState = "open"
            answerer.channels.append(inbound)
            await answerer.emit_async("datachannel", inbound)
            await channel.emit_async("open")
            await inbound.emit_async("open")

        for local, remote in ((offerer, answerer), (answerer, offerer)):
            for sender in remote.senders:
                await local.emit_async("track", sender.track)


class FakePeerConnection(FakeEmitter):
    def __init__(self, network: FakeNetwork, pc_id: str):
        super().__init__()
        self.network = network
        self.id = pc_id
        self.senders: List[FakeSender] = []
        self.channels: List[FakeDataChannel] = []
        self.candidates: List[RTCIceCandidate] = []
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.connectionState = "new"
        self.closed = False

    def addTrack(self, track) -> FakeSender:
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def createDataChannel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=f"fake:{self.id}", type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=f"fake:{self.id}", type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description
        if self.network.emit_candidates:
            await self.emit_async("icecandidate", make_candidate(int(self.id[2:])))

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self.remoteDescription = description
        if description.type == "answer":
            remote = self.network.peer_of(description)
            if remote is not None:
                await self.network.link(self, remote)

    async def addIceCandidate(self, candidate: RTCIceCandidate) -> None:
        self.candidates.append(candidate)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.connectionState = "closed"
        await self.emit_async("connectionstatechange")


# ==================== 미디어 ====================

class FakePlayer:
    def __init__(self, device, format=None, options=None):
        self.device = device
        self.format = format
        self.options = options
        self.video = VideoStreamTrack() if format in ("v4l2", "x11grab") else None
        self.audio = AudioStreamTrack() if format == "pulse" else None


class FakeView:
    """RemoteRenderer용 view. 실제 미디어를 소비하지 않음."""

    def __init__(self, peer_id: str):
        self.peer_id = peer_id
        self.tracks = []
        self.closed = False

    async def add_track(self, track) -> bool:
        if track in self.tracks:
            return False
        self.tracks.append(track)
        return True

    async def close(self) -> None:
        self.closed = True


@dataclass
class MeshHarness:
    relay: SignalingRelay
    network: FakeNetwork
    clients: Dict[str, MeshClient] = field(default_factory=dict)
    chats: List[tuple] = field(default_factory=list)

    async def add(self, user_id: str, room_id: str = "r1") -> MeshClient:
        client = MeshClient(
            user_id,
            LoopbackChannel(self.relay),
            MediaCapture(ClientSettings(), player_factory=FakePlayer),
            connection_factory=self.network.factory,
            renderer=RemoteRenderer(view_factory=FakeView),
        )
        client.on_chat_message = lambda peer_id, text, me=user_id: self.chats.append((me, peer_id, text))
        self.clients[user_id] = client
        await client.join(room_id)
        await self.settle()
        return client

    async def settle(self) -> None:
        """모든 클라이언트의 수신 envelope과 세션 메일박스가 빌 때까지 처리합니다."""
        for _ in range(50):
            progressed = False
            for client in list(self.clients.values()):
                inbox = client.channel.inbox
                while not inbox.empty():
                    await client.handle_envelope(inbox.get_nowait())
                    progressed = True
                for session in list(client.sessions.values()):
                    if not session._inbox.empty():
                        progressed = True
                    await session.drain()
            await asyncio.sleep(0)
            if not progressed:
                return

    async def shutdown(self) -> None:
        for client in list(self.clients.values()):
            await client.hangup()


@pytest.fixture
def client_settings():
    return ClientSettings()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def relay(registry):
    return SignalingRelay(registry)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
async def mesh(relay, network):
    harness = MeshHarness(relay=relay, network=network)
    yield harness
    await harness.shutdown()
