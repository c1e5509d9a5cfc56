"""송신 트랙 모듈.

세션마다 sender에 붙는 안정적인 송신 트랙을 제공합니다. 실제 프레임은
교체 가능한 소스(MediaRelay 구독)에서 받아오므로, 카메라 ↔ 화면 공유 전환 시
sender가 기다리던 recv()가 끊기지 않고 새 소스로 넘어갑니다.
"""

import logging
from typing import Optional

from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def blank_frame(frame):
    """frame과 같은 크기/타이밍의 검은 화면 또는 무음 프레임을 만듭니다.

    av 프레임이 아니면(이미 인코딩된 패킷 등) 그대로 반환합니다.
    """
    if isinstance(frame, VideoFrame):
        blank = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
        # Y=0, U=V=128
        for plane, fill in zip(blank.planes, (0, 128, 128)):
            plane.update(bytes([fill]) * plane.buffer_size)
    elif isinstance(frame, AudioFrame):
        blank = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
        for plane in blank.planes:
            plane.update(bytes(plane.buffer_size))
        blank.sample_rate = frame.sample_rate
    else:
        return frame
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class OutgoingTrack(MediaStreamTrack):
    """소스를 교체할 수 있는 송신 트랙.

    Attributes:
        kind (str): 트랙 종류 ("audio" 또는 "video")
        source (MediaStreamTrack): 현재 프레임을 받아오는 트랙 (보통 MediaRelay 구독)
        enabled (bool): False면 소스 프레임 대신 검은 화면/무음 프레임을 내보냄 (음소거)

    Note:
        - 교체된 이전 소스는 진행 중인 recv()가 끝난 뒤 정지됨
        - recv() 중이 아니면 교체 즉시 정지됨
        - 이전 소스가 끝나서(MediaStreamError) 깨어난 recv()는 새 소스로 계속 진행

    Examples:
        >>> track = OutgoingTrack(relay.subscribe(camera, buffered=False))
        >>> pc.addTrack(track)
        >>> track.replace_source(relay.subscribe(screen, buffered=False))
    """

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self._source: Optional[MediaStreamTrack] = source
        self._receiving: Optional[MediaStreamTrack] = None
        self.enabled = True

    @property
    def source(self) -> Optional[MediaStreamTrack]:
        return self._source

    def replace_source(self, source: MediaStreamTrack) -> None:
        """프레임 소스를 교체합니다."""
        old = self._source
        self._source = source
        if old is not None and old is not source and old is not self._receiving:
            old.stop()

    async def recv(self):
        """현재 소스에서 프레임을 받아 반환합니다.

        Raises:
            MediaStreamError: 트랙이 정지되었거나 현재 소스가 끝난 경우
        """
        while True:
            source = self._source
            if self.readyState != "live" or source is None:
                raise MediaStreamError

            self._receiving = source
            try:
                frame = await source.recv()
            except MediaStreamError:
                if source is self._source:
                    raise
                continue
            finally:
                self._receiving = None
                if source is not self._source:
                    source.stop()

            if source is self._source:
                # Muted tracks still consume source frames
                return frame if self.enabled else blank_frame(frame)

    def stop(self) -> None:
        super().stop()
        source, self._source = self._source, None
        if source is not None:
            source.stop()
