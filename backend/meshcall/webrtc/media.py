"""로컬 미디어 캡처 모듈.

카메라/마이크/화면을 aiortc MediaPlayer(ffmpeg 입력)로 열고, MediaRelay를 통해
원격 참가자 세션마다 독립적인 구독 트랙을 나눠 줍니다.

구성:
    - MediaCapture: 장치를 열어 LocalTracks를 만듦 (블로킹 open은 스레드에서 실행)
    - LocalTracks: 한 번의 캡처로 얻은 오디오/비디오 소스 트랙
    - LocalMedia: 현재 송신 소스와 MediaRelay (세션별 구독 발급)
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay

from ..config import ClientSettings

logger = logging.getLogger(__name__)

PlayerFactory = Callable[..., MediaPlayer]


class MediaAcquisitionError(Exception):
    """카메라/마이크/화면 캡처 장치를 열 수 없는 경우."""


@dataclass
class LocalTracks:
    """캡처된 소스 트랙 묶음."""

    audio: Optional[MediaStreamTrack] = None
    video: Optional[MediaStreamTrack] = None

    def stop(self) -> None:
        for track in (self.audio, self.video):
            if track is not None:
                track.stop()


class MediaCapture:
    """설정된 장치에서 로컬 미디어를 엽니다.

    Attributes:
        settings (ClientSettings): 장치 이름/포맷, 해상도, 프레임레이트
        player_factory (PlayerFactory): MediaPlayer 생성 함수 (테스트에서 교체)

    Examples:
        >>> capture = MediaCapture(get_client_settings())
        >>> tracks = await capture.acquire(video=True, audio=True)
        >>> screen = await capture.acquire_display()
    """

    def __init__(self, settings: ClientSettings, player_factory: PlayerFactory = MediaPlayer):
        self.settings = settings
        self.player_factory = player_factory

    async def acquire(self, video: bool = True, audio: bool = True) -> LocalTracks:
        """카메라/마이크를 엽니다.

        Raises:
            MediaAcquisitionError: 요청한 장치 중 하나라도 열 수 없는 경우.
                이미 연 장치는 정리됩니다.
        """
        if not video and not audio:
            raise ValueError("video와 audio 중 하나 이상 요청해야 합니다")

        tracks = LocalTracks()
        try:
            if video:
                tracks.video = await self._open(
                    "video",
                    self.settings.VIDEO_DEVICE,
                    self.settings.VIDEO_FORMAT,
                    {"video_size": self.settings.VIDEO_SIZE, "framerate": self.settings.FRAMERATE},
                )
            if audio:
                tracks.audio = await self._open(
                    "audio", self.settings.AUDIO_DEVICE, self.settings.AUDIO_FORMAT, {}
                )
        except MediaAcquisitionError:
            tracks.stop()
            raise

        logger.info(f"[Media] 로컬 미디어 획득: video={tracks.video is not None}, audio={tracks.audio is not None}")
        return tracks

    async def acquire_display(self) -> LocalTracks:
        """화면 캡처 비디오를 엽니다.

        Raises:
            MediaAcquisitionError: 화면 캡처 장치를 열 수 없는 경우
        """
        video = await self._open(
            "video",
            self.settings.DISPLAY_DEVICE,
            self.settings.DISPLAY_FORMAT,
            {"video_size": self.settings.VIDEO_SIZE, "framerate": self.settings.FRAMERATE},
        )
        logger.info(f"[Media] 화면 캡처 획득: {self.settings.DISPLAY_DEVICE}")
        return LocalTracks(video=video)

    async def _open(self, kind: str, device: str, fmt: str, options: Dict[str, str]) -> MediaStreamTrack:
        try:
            # av.open blocks on device probing
            player = await asyncio.to_thread(self.player_factory, device, format=fmt, options=options)
        except Exception as e:
            raise MediaAcquisitionError(f"{kind} 장치 열기 실패 ({fmt}:{device}): {e}") from e

        track = getattr(player, kind, None)
        if track is None:
            raise MediaAcquisitionError(f"{fmt}:{device}에 {kind} 스트림이 없습니다")
        return track


class LocalMedia:
    """현재 송신 중인 로컬 소스 트랙.

    소스 트랙 하나를 여러 세션이 동시에 소비할 수 있도록 MediaRelay로
    세션마다 별도 구독을 발급합니다. video 소스는 화면 공유 전환 시 교체됩니다.
    """

    def __init__(self, tracks: LocalTracks):
        self.relay = MediaRelay()
        self.audio: Optional[MediaStreamTrack] = tracks.audio
        self.video: Optional[MediaStreamTrack] = tracks.video
        # 마이크/카메라 음소거 상태. 이후 생성되는 세션에도 적용됨
        self.enabled: Dict[str, bool] = {"audio": True, "video": True}

    def subscribe(self, kind: str) -> Optional[MediaStreamTrack]:
        """kind 소스의 새 구독 트랙을 반환합니다. 소스가 없으면 None."""
        source = self.audio if kind == "audio" else self.video
        if source is None:
            return None
        return self.relay.subscribe(source, buffered=False)

    def stop(self) -> None:
        LocalTracks(audio=self.audio, video=self.video).stop()
        self.audio = None
        self.video = None
