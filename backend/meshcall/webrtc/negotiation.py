"""원격 참가자 1명과의 WebRTC 협상 모듈.

메시 통화에서 원격 참가자마다 PeerSession 하나가 만들어지며, offer/answer 교환과
ICE candidate 교환, 데이터 채널(채팅), 송신 트랙 교체를 담당합니다.

동시성 모델:
    세션마다 메일박스(asyncio.Queue)와 워커 태스크 하나가 있습니다. 시그널링
    메시지 처리 단계는 모두 post()로 메일박스에 넣고, 워커가 도착 순서대로
    하나씩 await 합니다. 따라서 한 세션의 offer/answer/candidate 처리는 서로
    끼어들지 않으며, 다른 세션이나 시그널링 수신 루프를 막지 않습니다.

상태 전이:
    idle ─(initiator)→ offer-sent ─(answer)→ connecting ─→ connected
    idle ─(responder)→ offer-received ─(answer 전송)→ connecting ─→ connected
    어느 상태에서든 → closed (종료 또는 실패, 실패 시 failure에 사유 기록)

Examples:
    >>> session = PeerSession("bob", "alice", PeerRole.INITIATOR, send=channel.send,
    ...                       local_media=media, pipeline=pipeline)
    >>> session.start()
    >>> session.initiate()
    >>> session.receive_answer({"sdp": "...", "type": "answer"})
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from aiortc import MediaStreamTrack, RTCIceCandidate, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..shared import Envelope, EnvelopeType, signal_envelope
from .config import ice_config
from .tracks import OutgoingTrack
from .transforms import TrackTransformPipeline

logger = logging.getLogger(__name__)

CHAT_CHANNEL_LABEL = "chat"


class NegotiationState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    OFFER_RECEIVED = "offer-received"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class PeerRole(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


# 상태는 이 순서로만 진행됨 (offer-sent / offer-received 는 같은 단계)
_STATE_ORDER = {
    NegotiationState.IDLE: 0,
    NegotiationState.OFFER_SENT: 1,
    NegotiationState.OFFER_RECEIVED: 1,
    NegotiationState.CONNECTING: 2,
    NegotiationState.CONNECTED: 3,
    NegotiationState.CLOSED: 4,
}


def description_to_dict(description: RTCSessionDescription) -> Dict[str, str]:
    return {"sdp": description.sdp, "type": description.type}


def description_from_dict(data: Dict[str, Any]) -> RTCSessionDescription:
    if not isinstance(data, dict) or "sdp" not in data or "type" not in data:
        raise ValueError(f"잘못된 session description: {data!r}")
    return RTCSessionDescription(sdp=data["sdp"], type=data["type"])


def candidate_to_dict(candidate: RTCIceCandidate) -> Dict[str, Any]:
    """aiortc candidate를 브라우저 RTCIceCandidateInit 형식으로 변환합니다."""
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def candidate_from_dict(data: Dict[str, Any]) -> Optional[RTCIceCandidate]:
    """RTCIceCandidateInit 형식을 aiortc candidate로 변환합니다.

    candidate 문자열이 비어 있으면(end-of-candidates) None을 반환합니다.

    Raises:
        ValueError: candidate 문자열을 파싱할 수 없는 경우
    """
    if not isinstance(data, dict):
        raise ValueError(f"잘못된 candidate: {data!r}")

    candidate_str = data.get("candidate") or ""
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]
    if not candidate_str:
        return None

    try:
        candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"candidate 파싱 실패: {candidate_str!r}") from e

    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


def default_connection_factory() -> RTCPeerConnection:
    return RTCPeerConnection(configuration=ice_config.as_rtc_configuration())


class PeerSession:
    """원격 참가자 1명과의 연결 상태 머신.

    Attributes:
        peer_id (str): 원격 참가자 ID
        local_id (str): 로컬 참가자 ID (시그널링 `from` 필드)
        role (PeerRole): initiator(offer 생성) 또는 responder
        state (NegotiationState): 현재 협상 상태
        failure (Optional[str]): 실패로 종료된 경우 그 사유
        pc (Optional[RTCPeerConnection]): 첫 처리 단계에서 생성됨
        data_channel: "chat" 데이터 채널 (initiator는 생성, responder는 수신)
        video_sender: 송신 비디오 RTCRtpSender

    Callbacks:
        on_track(peer_id, track): 원격 미디어 트랙 수신 (async)
        on_chat_message(peer_id, text): 데이터 채널 메시지 수신
        on_closed(session): 세션 종료 (async, 한 번만 호출)

    Note:
        - 처리 단계에서 예외가 나면 세션은 closed 로 전이되고 failure가 기록됨
        - 잘못된 candidate 하나는 세션을 종료하지 않고 로그만 남김
        - 종료된 세션에 post()된 단계는 무시됨
        - aiortc는 setLocalDescription() 안에서 candidate 수집을 끝내고 SDP에
          포함시키며 "icecandidate" 이벤트를 내지 않음. 따라서 aiortc 피어끼리는
          candidate가 offer/answer SDP로만 전달되고, 개별 candidate 송신
          (trickle ICE)은 이벤트를 내는 브라우저 피어와 연결될 때만 쓰임
    """

    def __init__(
        self,
        peer_id: str,
        local_id: str,
        role: PeerRole,
        send: Callable[[Envelope], Awaitable[None]],
        local_media,
        pipeline: TrackTransformPipeline,
        connection_factory: Callable[[], RTCPeerConnection] = default_connection_factory,
        on_track: Optional[Callable[[str, MediaStreamTrack], Awaitable[None]]] = None,
        on_chat_message: Optional[Callable[[str, str], None]] = None,
        on_closed: Optional[Callable[["PeerSession"], Awaitable[None]]] = None,
    ):
        self.peer_id = peer_id
        self.local_id = local_id
        self.role = role
        self.send = send
        self.local_media = local_media
        self.pipeline = pipeline
        self.connection_factory = connection_factory
        self.on_track = on_track
        self.on_chat_message = on_chat_message
        self.on_closed = on_closed

        self.state = NegotiationState.IDLE
        self.failure: Optional[str] = None
        self.pc: Optional[RTCPeerConnection] = None
        self.data_channel = None
        self.video_sender = None

        self._outgoing: Dict[str, MediaStreamTrack] = {}
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self.state == NegotiationState.CLOSED

    # ==================== 메일박스 ====================

    def start(self) -> None:
        """워커 태스크를 시작합니다. 실행 중인 이벤트 루프에서 호출해야 합니다."""
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name=f"peer-session-{self.peer_id}")

    def post(self, step: Callable[[], Awaitable[None]]) -> None:
        """처리 단계를 메일박스에 넣습니다."""
        if self.closed:
            logger.debug(f"[Peer {self.peer_id[:8]}] 종료된 세션, 단계 무시")
            return
        self._inbox.put_nowait(step)

    async def drain(self) -> None:
        """지금까지 post()된 단계가 모두 처리될 때까지 기다립니다."""
        if self.closed or self._worker is None:
            return
        done = asyncio.get_running_loop().create_future()

        async def mark_done():
            done.set_result(None)

        self.post(mark_done)
        await asyncio.wait({done, self._worker}, return_when=asyncio.FIRST_COMPLETED)

    async def _run(self) -> None:
        while not self.closed:
            step = await self._inbox.get()
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Peer {self.peer_id[:8]}] 협상 실패 ({self.state.value}): {e}", exc_info=True)
                await self.close(failure=f"{type(e).__name__}: {e}")
                return

    # ==================== 시그널링 입력 ====================

    def initiate(self) -> None:
        self.post(self._start_as_initiator)

    def receive_offer(self, offer: Dict[str, Any]) -> None:
        self.post(lambda: self._accept_offer(offer))

    def receive_answer(self, answer: Dict[str, Any]) -> None:
        self.post(lambda: self._apply_answer(answer))

    def receive_candidate(self, candidate: Dict[str, Any]) -> None:
        self.post(lambda: self._add_remote_candidate(candidate))

    # ==================== 처리 단계 ====================

    async def _start_as_initiator(self) -> None:
        pc = self._create_connection()
        self._setup_data_channel(pc.createDataChannel(CHAT_CHANNEL_LABEL))

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        self._advance(NegotiationState.OFFER_SENT)
        await self._send(EnvelopeType.OFFER, {"offer": description_to_dict(pc.localDescription)})
        logger.info(f"[Peer {self.peer_id[:8]}] offer 전송")

    async def _accept_offer(self, offer: Dict[str, Any]) -> None:
        description = description_from_dict(offer)
        if self.pc is not None:
            logger.warning(f"[Peer {self.peer_id[:8]}] 이미 연결이 있는 세션에 offer 수신, 무시")
            return

        pc = self._create_connection()
        await pc.setRemoteDescription(description)
        self._advance(NegotiationState.OFFER_RECEIVED)

        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        self._advance(NegotiationState.CONNECTING)
        await self._send(EnvelopeType.ANSWER, {"answer": description_to_dict(pc.localDescription)})
        logger.info(f"[Peer {self.peer_id[:8]}] answer 전송")

    async def _apply_answer(self, answer: Dict[str, Any]) -> None:
        if self.state != NegotiationState.OFFER_SENT:
            logger.warning(f"[Peer {self.peer_id[:8]}] {self.state.value} 상태에서 answer 수신, 무시")
            return
        await self.pc.setRemoteDescription(description_from_dict(answer))
        self._advance(NegotiationState.CONNECTING)
        logger.info(f"[Peer {self.peer_id[:8]}] answer 적용")

    async def _add_remote_candidate(self, data: Dict[str, Any]) -> None:
        if self.pc is None:
            logger.debug(f"[Peer {self.peer_id[:8]}] 연결 생성 전 candidate 수신, 무시")
            return
        try:
            candidate = candidate_from_dict(data)
            if candidate is None:
                return
            await self.pc.addIceCandidate(candidate)
        except Exception as e:
            logger.error(f"[Peer {self.peer_id[:8]}] ICE candidate 추가 실패: {e}")

    # ==================== 연결 구성 ====================

    def _create_connection(self) -> RTCPeerConnection:
        pc = self.connection_factory()
        self.pc = pc

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate and not self.closed:
                await self._send(EnvelopeType.CANDIDATE, {"candidate": candidate_to_dict(candidate)})

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            connection_state = pc.connectionState
            logger.info(f"[Peer {self.peer_id[:8]}] 연결 상태: {connection_state}")
            if self.closed:
                return
            if connection_state == "connected":
                self._advance(NegotiationState.CONNECTED)
            elif connection_state == "failed":
                await self.close(failure="connection failed")
            elif connection_state == "closed":
                await self.close()

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            logger.info(f"[Peer {self.peer_id[:8]}] 원격 {track.kind} 트랙 수신")
            if self.on_track and not self.closed:
                await self.on_track(self.peer_id, track)

        @pc.on("datachannel")
        def on_datachannel(channel):
            self._setup_data_channel(channel)

        self._attach_local_tracks(pc)
        return pc

    def _attach_local_tracks(self, pc: RTCPeerConnection) -> None:
        for kind in ("audio", "video"):
            source = self.local_media.subscribe(kind)
            if source is None:
                continue
            track = OutgoingTrack(source)
            track.enabled = self.local_media.enabled.get(kind, True)
            sender = pc.addTrack(track)
            self._outgoing[kind] = track
            if kind == "video":
                self.video_sender = sender
                self.pipeline.install(sender)

    def _setup_data_channel(self, channel) -> None:
        self.data_channel = channel

        @channel.on("open")
        def on_open():
            logger.info(f"[Peer {self.peer_id[:8]}] 데이터 채널 열림")

        @channel.on("message")
        def on_message(message):
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            if self.on_chat_message:
                self.on_chat_message(self.peer_id, message)

        @channel.on("close")
        def on_close():
            logger.info(f"[Peer {self.peer_id[:8]}] 데이터 채널 닫힘")

    # ==================== 로컬 조작 ====================

    def send_chat(self, text: str) -> bool:
        """열린 데이터 채널로 채팅을 보냅니다. 보냈으면 True."""
        channel = self.data_channel
        if self.closed or channel is None or channel.readyState != "open":
            return False
        channel.send(text)
        return True

    def replace_video_source(self, source: MediaStreamTrack) -> bool:
        """송신 비디오를 재협상 없이 교체합니다.

        Args:
            source: 새 프레임 소스 (MediaRelay 구독)

        Returns:
            bool: 교체했으면 True. False면 source는 호출자가 정리해야 함
        """
        track = self._outgoing.get("video")
        if self.closed or self.video_sender is None or track is None:
            return False
        track.replace_source(source)
        self.reattach_video()
        return True

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        """송신 트랙을 음소거하거나 다시 켭니다. 해당 트랙이 없으면 False."""
        track = self._outgoing.get(kind)
        if self.closed or track is None:
            return False
        track.enabled = enabled
        return True

    def reattach_video(self) -> None:
        """송신 비디오 트랙을 다시 연결하고 프레임 변환을 재평가합니다."""
        if self.closed or self.video_sender is None:
            return
        self.video_sender.replaceTrack(self._outgoing["video"])
        self.pipeline.install(self.video_sender)

    async def close(self, failure: Optional[str] = None) -> None:
        """세션을 종료합니다. 여러 번 호출해도 안전합니다."""
        if self.closed:
            return
        self.state = NegotiationState.CLOSED
        if failure:
            self.failure = failure

        worker = self._worker
        if worker is not None and worker is not asyncio.current_task() and not worker.done():
            worker.cancel()

        try:
            if self.video_sender is not None:
                self.pipeline.uninstall(self.video_sender)
            for track in self._outgoing.values():
                track.stop()
            self._outgoing.clear()
            if self.pc is not None:
                await self.pc.close()
        finally:
            if failure:
                logger.warning(f"[Peer {self.peer_id[:8]}] 세션 실패로 종료: {failure}")
            else:
                logger.info(f"[Peer {self.peer_id[:8]}] 세션 종료")
            if self.on_closed:
                await self.on_closed(self)

    # ==================== 내부 ====================

    def _advance(self, state: NegotiationState) -> None:
        if _STATE_ORDER[state] > _STATE_ORDER[self.state]:
            logger.debug(f"[Peer {self.peer_id[:8]}] {self.state.value} → {state.value}")
            self.state = state

    async def _send(self, kind: EnvelopeType, blob: Dict[str, Any]) -> None:
        await self.send(signal_envelope(kind, self.peer_id, self.local_id, blob))
