"""메시 통화 클라이언트.

룸에 참가해 다른 참가자 모두와 1:1 WebRTC 연결(풀 메시)을 맺습니다.
시그널링 채널에서 받은 envelope을 원격 참가자별 PeerSession으로 전달하고,
채팅 팬아웃, 비디오 효과 토글, 화면 공유 전환을 처리합니다.

참가 흐름:
    1. join(): 카메라/마이크 획득 → join envelope 전송
    2. 기존 참가자는 user-joined를 받아 initiator 세션을 만들고 offer 전송
    3. 새 참가자는 offer를 받아 responder 세션을 만들고 answer 전송
    4. candidate 교환 후 미디어와 채팅 데이터 채널이 연결됨

Examples:
    >>> client = MeshClient("alice", channel, MediaCapture(settings))
    >>> client.on_chat_message = lambda peer_id, text: print(peer_id, text)
    >>> await client.join("r1")
    >>> asyncio.create_task(client.run())
    >>> client.send_chat("hi")
    1
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from aiortc import MediaStreamTrack, RTCPeerConnection
from pydantic import ValidationError

from ..shared import (
    Envelope,
    EnvelopeType,
    PeerPayload,
    SignalPayload,
    UNICAST_TYPES,
    join_envelope,
)
from ..webrtc import (
    LocalMedia,
    MediaCapture,
    PeerRole,
    PeerSession,
    TrackTransformPipeline,
    TransformState,
)
from ..webrtc.negotiation import default_connection_factory
from .render import RemoteRenderer

logger = logging.getLogger(__name__)


class MeshClient:
    """풀 메시 통화 클라이언트.

    Attributes:
        user_id (str): 로컬 참가자 ID
        room_id (Optional[str]): 참가한 룸 (join 전에는 None)
        channel: send(envelope) / async 반복 / close()를 제공하는 시그널링 채널
        capture (MediaCapture): 카메라/마이크/화면 캡처
        sessions (Dict[str, PeerSession]): 원격 참가자 ID → 현재 세션
        transform_state (TransformState): 픽셀화/글리치 토글 상태
        renderer (RemoteRenderer): 원격 참가자 미디어 렌더링

    Callbacks:
        on_chat_message(peer_id, text): 채팅 수신
        on_local_preview(track): 로컬 비디오 소스가 바뀜 (join, 화면 공유 전환)

    Note:
        - 세션 없는 참가자의 answer/candidate는 버려짐 (버퍼링하지 않음)
        - 살아 있는 세션이 있는 참가자의 user-joined/offer는 기존 세션을 닫고 새로 만듦
        - 중복 user-left는 아무 일도 하지 않음
    """

    def __init__(
        self,
        user_id: str,
        channel,
        capture: MediaCapture,
        pixelation_level: int = 10,
        connection_factory: Callable[[], RTCPeerConnection] = default_connection_factory,
        renderer: Optional[RemoteRenderer] = None,
    ):
        self.user_id = user_id
        self.room_id: Optional[str] = None
        self.channel = channel
        self.capture = capture
        self.connection_factory = connection_factory

        self.sessions: Dict[str, PeerSession] = {}
        self.transform_state = TransformState(pixelation_level)
        self.pipeline = TrackTransformPipeline(self.transform_state)
        self.renderer = renderer or RemoteRenderer()
        self.local_media: Optional[LocalMedia] = None

        self.on_chat_message: Optional[Callable[[str, str], None]] = None
        self.on_local_preview: Optional[Callable[[MediaStreamTrack], None]] = None

        self._screen: Optional[MediaStreamTrack] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def screen_sharing(self) -> bool:
        return self._screen is not None

    # ==================== 참가 / 수신 ====================

    async def join(self, room_id: str) -> None:
        """로컬 미디어를 획득한 뒤 룸에 참가합니다.

        Raises:
            MediaAcquisitionError: 카메라/마이크를 열 수 없는 경우 (join은 전송되지 않음)
            RuntimeError: 이미 참가한 경우
        """
        if self.room_id is not None:
            raise RuntimeError(f"이미 룸 '{self.room_id}'에 참가했습니다")

        tracks = await self.capture.acquire(video=True, audio=True)
        self.local_media = LocalMedia(tracks)
        self._notify_preview(tracks.video)

        self.room_id = room_id
        await self.channel.send(join_envelope(room_id, self.user_id))
        logger.info(f"[Mesh] 룸 '{room_id}' 참가 요청: user={self.user_id}")

    async def run(self) -> None:
        """시그널링 채널이 닫힐 때까지 envelope을 처리합니다."""
        async for envelope in self.channel:
            await self.handle_envelope(envelope)
        logger.info("[Mesh] 시그널링 수신 종료")

    async def handle_envelope(self, envelope: Envelope) -> None:
        try:
            if envelope.type == EnvelopeType.USER_JOINED:
                peer = PeerPayload.model_validate(envelope.payload)
                if peer.user_id == self.user_id:
                    return
                session = await self._open_session(peer.user_id, PeerRole.INITIATOR)
                session.initiate()

            elif envelope.type == EnvelopeType.USER_LEFT:
                peer = PeerPayload.model_validate(envelope.payload)
                await self.remove_peer(peer.user_id)

            elif envelope.type in UNICAST_TYPES:
                await self._handle_signal(envelope.type, SignalPayload.model_validate(envelope.payload))

            else:
                logger.debug(f"[Mesh] 처리하지 않는 메시지 타입: {envelope.type.value}")
        except ValidationError as e:
            logger.warning(f"[Mesh] 잘못된 {envelope.type.value} payload 무시: {e.error_count()}개 오류")

    async def _handle_signal(self, kind: EnvelopeType, signal: SignalPayload) -> None:
        sender = signal.sender
        if not sender:
            logger.warning(f"[Mesh] from 없는 {kind.value} 무시")
            return
        if signal.target_id != self.user_id:
            logger.debug(f"[Mesh] 다른 참가자({signal.target_id}) 대상 {kind.value} 무시")
            return

        field = kind.value
        blob = signal.blob.get(field)
        if blob is None:
            logger.warning(f"[Mesh] {field} 필드 없는 {kind.value} 무시 (from={sender[:8]})")
            return

        if kind == EnvelopeType.OFFER:
            session = await self._open_session(sender, PeerRole.RESPONDER)
            session.receive_offer(blob)
            return

        session = self.sessions.get(sender)
        if session is None:
            logger.debug(f"[Mesh] 세션 없는 참가자 {sender[:8]}의 {kind.value} 무시")
            return
        if kind == EnvelopeType.ANSWER:
            session.receive_answer(blob)
        else:
            session.receive_candidate(blob)

    # ==================== 세션 관리 ====================

    async def _open_session(self, peer_id: str, role: PeerRole) -> PeerSession:
        existing = self.sessions.get(peer_id)
        if existing is not None:
            logger.info(f"[Mesh] 참가자 {peer_id[:8]} 기존 세션 교체 ({existing.state.value})")
            await existing.close()

        session = PeerSession(
            peer_id,
            self.user_id,
            role,
            send=self.channel.send,
            local_media=self.local_media,
            pipeline=self.pipeline,
            connection_factory=self.connection_factory,
            on_track=self._on_remote_track,
            on_chat_message=self._on_chat_message,
            on_closed=self._on_session_closed,
        )
        self.sessions[peer_id] = session
        session.start()
        logger.info(f"[Mesh] 참가자 {peer_id[:8]} 세션 생성 ({role.value})")
        return session

    async def remove_peer(self, peer_id: str) -> None:
        """참가자의 세션과 렌더 view를 정리합니다. 여러 번 호출해도 안전합니다."""
        session = self.sessions.get(peer_id)
        if session is not None:
            await session.close()
        else:
            await self.renderer.remove(peer_id)

    async def _on_session_closed(self, session: PeerSession) -> None:
        if self.sessions.get(session.peer_id) is session:
            del self.sessions[session.peer_id]
            await self.renderer.remove(session.peer_id)

    async def _on_remote_track(self, peer_id: str, track: MediaStreamTrack) -> None:
        await self.renderer.attach(peer_id, track)

    def _on_chat_message(self, peer_id: str, text: str) -> None:
        logger.debug(f"[Mesh] 채팅 수신: from={peer_id[:8]}")
        if self.on_chat_message:
            self.on_chat_message(peer_id, text)

    # ==================== UI 조작 ====================

    def send_chat(self, text: str) -> int:
        """열린 모든 데이터 채널로 채팅을 보냅니다. 보낸 채널 수를 반환합니다."""
        return sum(1 for session in list(self.sessions.values()) if session.send_chat(text))

    def toggle_pixelation(self) -> bool:
        enabled = self.transform_state.toggle_pixelation()
        self._reattach_video()
        logger.info(f"[Mesh] 픽셀화 {'켜짐' if enabled else '꺼짐'}")
        return enabled

    def set_pixelation_level(self, level: int) -> int:
        """픽셀화 강도를 바꿉니다. 다음 처리 프레임부터 적용됩니다."""
        self.transform_state.pixelation_level = level
        return self.transform_state.pixelation_level

    def toggle_glitch(self) -> bool:
        enabled = self.transform_state.toggle_glitch()
        self._reattach_video()
        logger.info(f"[Mesh] 글리치 {'켜짐' if enabled else '꺼짐'}")
        return enabled

    def toggle_microphone(self) -> bool:
        """마이크 음소거를 토글합니다. 켜진 상태면 True를 반환합니다."""
        return self._toggle_track("audio", "마이크")

    def toggle_camera(self) -> bool:
        """카메라(화면 공유 중이면 화면)를 검은 화면으로 토글합니다. 켜진 상태면 True."""
        return self._toggle_track("video", "카메라")

    def _toggle_track(self, kind: str, label: str) -> bool:
        if self.local_media is None:
            raise RuntimeError("로컬 미디어가 없습니다")

        enabled = not self.local_media.enabled[kind]
        self.local_media.enabled[kind] = enabled
        for session in list(self.sessions.values()):
            session.set_track_enabled(kind, enabled)

        logger.info(f"[Mesh] {label} {'켜짐' if enabled else '꺼짐'}")
        return enabled

    async def toggle_screen_share(self) -> bool:
        """화면 공유를 켜거나 끕니다. 켜진 상태면 True를 반환합니다.

        Raises:
            MediaAcquisitionError: 화면 또는 카메라를 열 수 없는 경우 (상태는 그대로)
        """
        if self._screen is not None:
            await self._stop_screen_share()
            return False

        display = await self.capture.acquire_display()
        screen = display.video
        self._screen = screen

        @screen.on("ended")
        def on_ended():
            if self._screen is screen:
                logger.info("[Mesh] 화면 캡처 종료됨, 카메라로 복귀")
                self._spawn(self._stop_screen_share())

        camera = self._swap_video_source(screen)
        if camera is not None:
            camera.stop()
        logger.info("[Mesh] 화면 공유 시작")
        return True

    async def _stop_screen_share(self) -> None:
        screen = self._screen
        if screen is None:
            return
        camera = await self.capture.acquire(video=True, audio=False)
        if self._screen is not screen:
            camera.stop()
            return

        self._screen = None
        self._swap_video_source(camera.video)
        screen.stop()
        logger.info("[Mesh] 화면 공유 종료")

    def _swap_video_source(self, source: MediaStreamTrack) -> Optional[MediaStreamTrack]:
        """모든 세션의 송신 비디오 소스를 한 번에 교체하고 이전 소스를 반환합니다."""
        if self.local_media is None:
            raise RuntimeError("로컬 미디어가 없습니다")

        previous = self.local_media.video
        self.local_media.video = source
        for session in list(self.sessions.values()):
            subscription = self.local_media.subscribe("video")
            if not session.replace_video_source(subscription):
                subscription.stop()

        self._notify_preview(source)
        return previous

    def _reattach_video(self) -> None:
        for session in list(self.sessions.values()):
            session.reattach_video()

    def _notify_preview(self, track: Optional[MediaStreamTrack]) -> None:
        if self.on_local_preview and track is not None:
            self.on_local_preview(track)

    async def hangup(self) -> None:
        """모든 세션을 닫고 로컬 미디어와 시그널링 채널을 정리합니다."""
        for session in list(self.sessions.values()):
            await session.close()
        await self.renderer.close_all()

        for task in list(self._tasks):
            task.cancel()

        screen, self._screen = self._screen, None
        if screen is not None:
            screen.stop()
        if self.local_media is not None:
            self.local_media.stop()
            self.local_media = None

        self.room_id = None
        await self.channel.close()
        logger.info("[Mesh] 통화 종료")

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Mesh] 백그라운드 작업 실패: {task.exception()}")
