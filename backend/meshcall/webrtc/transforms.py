"""인코딩된 비디오 프레임 변환 모듈.

송신 직전의 인코딩된(압축된) 비디오 프레임을 가로채 payload 바이트를
바꾸는 파이프라인을 제공합니다. 압축된 데이터를 직접 건드리므로 수신측
디코딩이 깨질 수 있으며, 이것이 의도된 시각 효과입니다.

효과:
    - 픽셀화: 5 프레임마다 1개를 골라 10바이트 청크 단위로 0으로 덮거나 복사
    - 글리치: 모든 프레임에서 임의 위치 5바이트를 임의 값으로 덮어씀

설치 방식:
    aiortc의 RTCRtpSender는 `_next_encoded_frame(codec)`으로 인코딩된 프레임
    (RTCEncodedFrame: payloads, timestamp, audio_level)을 얻은 뒤 RTP로
    패킷화합니다. TrackTransformPipeline.install()은 특정 sender 인스턴스의
    이 메서드만 감싸며, 클래스는 건드리지 않습니다. uninstall()은 인스턴스
    속성을 제거해 원래 메서드로 되돌립니다.
"""

import copy
import logging
import random
from typing import Callable, List, Optional

from aiortc.codecs.vpx import VpxPayloadDescriptor

from .config import transform_config

logger = logging.getLogger(__name__)

FrameTransform = Callable[[bytes], bytes]

_HOOK_ATTRIBUTE = "_next_encoded_frame"

# H264 RTP packetization (RFC 6184) NAL 타입
_H264_STAP_A = 24
_H264_FU_A = 28


class TransformState:
    """로컬 클라이언트의 비디오 효과 토글 상태.

    픽셀화와 글리치는 서로 배타적입니다. 어느 한쪽을 켜면 다른 쪽은 꺼집니다.
    파이프라인은 트랙이 (재)연결될 때 이 상태를 읽어 변환을 선택하고,
    픽셀화 강도는 프레임을 처리할 때마다 다시 읽습니다.

    Attributes:
        pixelation (bool): 픽셀화 활성화 여부
        glitch (bool): 글리치 활성화 여부
        pixelation_level (int): 픽셀화 강도 (0~100으로 제한)
    """

    def __init__(self, pixelation_level: int = 10):
        self.pixelation = False
        self.glitch = False
        self._pixelation_level = 0
        self.pixelation_level = pixelation_level

    @property
    def pixelation_level(self) -> int:
        return self._pixelation_level

    @pixelation_level.setter
    def pixelation_level(self, level: int) -> None:
        self._pixelation_level = max(
            transform_config.PIXELATION_LEVEL_MIN,
            min(transform_config.PIXELATION_LEVEL_MAX, int(level))
        )

    @property
    def active(self) -> bool:
        return self.pixelation or self.glitch

    def set_pixelation(self, enabled: bool) -> None:
        self.pixelation = enabled
        if enabled:
            self.glitch = False

    def set_glitch(self, enabled: bool) -> None:
        self.glitch = enabled
        if enabled:
            self.pixelation = False

    def toggle_pixelation(self) -> bool:
        self.set_pixelation(not self.pixelation)
        return self.pixelation

    def toggle_glitch(self) -> bool:
        self.set_glitch(not self.glitch)
        return self.glitch


def pixelate(data: bytes, level: int, step: int = transform_config.PIXELATION_STEP) -> bytes:
    """payload를 청크 단위로 0으로 덮거나 복사합니다.

    오프셋 i의 청크는 `i % (step * 2) < level`이면 0, 아니면 원본을 복사합니다.
    level이 step 이하이면 청크가 번갈아 지워지고, step * 2 이상이면 전부 지워집니다.

    Args:
        data: 원본 payload
        level: 픽셀화 강도
        step: 청크 크기 (바이트)

    Returns:
        bytes: 원본과 길이가 같은 새 버퍼
    """
    out = bytearray(len(data))
    for offset in range(0, len(data), step):
        if offset % (step * 2) >= level:
            out[offset:offset + step] = data[offset:offset + step]
    return bytes(out)


def glitch(data: bytes, rng: random.Random, count: int = transform_config.GLITCH_CORRUPTIONS) -> bytes:
    """payload 복사본의 임의 위치 `count`곳을 임의 바이트로 덮어씁니다.

    같은 위치가 여러 번 뽑히거나 우연히 원래 값과 같을 수 있으므로
    실제로 바뀌는 바이트는 최대 `count`개입니다. 빈 payload는 그대로 반환합니다.
    """
    out = bytearray(data)
    if not out:
        return bytes(out)
    for _ in range(count):
        out[rng.randrange(len(out))] = rng.randrange(256)
    return bytes(out)


class PixelationTransform:
    """픽셀화 변환. 설치마다 새 인스턴스를 만들어 프레임 카운터를 0부터 시작합니다."""

    def __init__(self, state: TransformState, interval: int = transform_config.PIXELATION_FRAME_INTERVAL):
        self.state = state
        self.interval = interval
        self.frame_count = 0

    def __call__(self, data: bytes) -> bytes:
        if self.frame_count % self.interval == 0:
            # Level is read per frame so slider changes apply without reinstalling
            data = pixelate(data, self.state.pixelation_level)
        self.frame_count += 1
        return data


class GlitchTransform:
    """글리치 변환. 프레임을 건너뛰지 않습니다."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def __call__(self, data: bytes) -> bytes:
        return glitch(data, self.rng)


def payload_header_size(payload: bytes, mime_type: Optional[str]) -> int:
    """RTP payload 앞의 코덱 packetization 헤더 길이를 반환합니다.

    - VP8: VpxPayloadDescriptor 길이
    - H264: 단일 NAL 헤더 1바이트, FU-A 헤더 2바이트.
      STAP-A 등 집합 패킷(SPS/PPS 포함)은 전체를 헤더로 취급해 건드리지 않음
    - 그 외/알 수 없는 코덱: 0 (payload 전체가 프레임 데이터)

    헤더를 해석할 수 없으면 payload 전체를 헤더로 취급합니다.
    """
    mime = (mime_type or "").lower()
    if mime == "video/vp8":
        try:
            _, data = VpxPayloadDescriptor.parse(payload)
        except ValueError:
            return len(payload)
        return len(payload) - len(data)
    if mime == "video/h264":
        if not payload:
            return 0
        nal_type = payload[0] & 0x1F
        if nal_type == _H264_FU_A:
            return min(2, len(payload))
        if 1 <= nal_type < _H264_STAP_A:
            return 1
        return len(payload)
    return 0


def transform_encoded_frame(frame, transform: FrameTransform, mime_type: Optional[str] = None):
    """RTCEncodedFrame의 프레임 데이터만 바꾼 사본을 반환합니다.

    aiortc의 payloads는 이미 RTP 패킷 단위로 나뉘어 있고, 각 조각 앞에는
    코덱 헤더(VP8 descriptor, H264 NAL/FU-A 헤더)가 붙어 있습니다. 헤더를 떼어낸
    데이터 부분만 하나의 프레임 버퍼로 이어 붙여 변환하고, 원래 경계대로
    나눈 뒤 각 조각 앞에 헤더를 다시 붙입니다. 헤더와 timestamp 등 나머지
    속성은 그대로 유지됩니다.

    Args:
        frame: RTCEncodedFrame (None 또는 빈 프레임은 그대로 반환)
        transform: 프레임 데이터 변환 함수
        mime_type: 송신 코덱 (예: "video/VP8")
    """
    if frame is None or not frame.payloads:
        return frame

    headers: List[bytes] = []
    bodies: List[bytes] = []
    for payload in frame.payloads:
        size = payload_header_size(payload, mime_type)
        headers.append(payload[:size])
        bodies.append(payload[size:])

    if not any(bodies):
        return frame

    data = transform(b"".join(bodies))

    payloads: List[bytes] = []
    offset = 0
    for header, body in zip(headers, bodies):
        payloads.append(header + data[offset:offset + len(body)])
        offset += len(body)

    out = copy.copy(frame)
    out.payloads = payloads
    return out


class TrackTransformPipeline:
    """송신 비디오 sender에 프레임 변환을 설치/제거합니다.

    Attributes:
        state (TransformState): 클라이언트 공용 효과 상태
        rng_factory (Callable[[], random.Random]): 글리치용 난수 생성기 팩토리

    Examples:
        >>> pipeline = TrackTransformPipeline(state)
        >>> state.set_glitch(True)
        >>> pipeline.install(sender)  # 트랙을 붙이거나 교체한 직후 호출
        <GlitchTransform ...>
        >>> state.set_glitch(False)
        >>> pipeline.install(sender)  # 효과가 없으면 기존 hook만 제거
    """

    def __init__(self, state: TransformState, rng_factory: Callable[[], random.Random] = random.Random):
        self.state = state
        self.rng_factory = rng_factory

    def select(self) -> Optional[FrameTransform]:
        """현재 상태에 맞는 새 변환을 만듭니다. 픽셀화가 우선합니다."""
        if self.state.pixelation:
            return PixelationTransform(self.state)
        if self.state.glitch:
            return GlitchTransform(self.rng_factory())
        return None

    def install(self, sender) -> Optional[FrameTransform]:
        """sender에 현재 상태의 변환을 설치합니다.

        기존 hook은 항상 먼저 제거하므로, 효과가 모두 꺼져 있으면 sender는
        원래의 바이트 그대로 전송하는 상태가 됩니다.

        Args:
            sender: aiortc RTCRtpSender (비디오)

        Returns:
            Optional[FrameTransform]: 설치된 변환. 설치하지 않았으면 None
        """
        self.uninstall(sender)

        if getattr(sender, "kind", None) != "video":
            return None

        transform = self.select()
        if transform is None:
            return None

        original = getattr(sender, _HOOK_ATTRIBUTE)

        async def next_encoded_frame(*args, **kwargs):
            frame = await original(*args, **kwargs)
            codec = args[0] if args else kwargs.get("codec")
            try:
                return transform_encoded_frame(frame, transform, getattr(codec, "mimeType", None))
            except Exception as e:
                # Never drop a frame: fall back to the untouched one
                logger.error(f"[Transform] 프레임 변환 실패, 원본 전송: {e}")
                return frame

        setattr(sender, _HOOK_ATTRIBUTE, next_encoded_frame)
        logger.info(f"[Transform] {type(transform).__name__} 설치")
        return transform

    def uninstall(self, sender) -> bool:
        """sender의 변환 hook을 제거합니다. 설치되어 있었으면 True."""
        removed = vars(sender).pop(_HOOK_ATTRIBUTE, None) is not None
        if removed:
            logger.info("[Transform] 프레임 변환 제거")
        return removed
