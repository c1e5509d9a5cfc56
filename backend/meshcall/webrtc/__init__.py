"""WebRTC 모듈.

원격 참가자별 협상 세션, 로컬 미디어 캡처, 인코딩 프레임 변환을 제공합니다.

Classes:
    PeerSession: 원격 참가자 1명과의 offer/answer/ICE 상태 머신
    LocalMedia: 현재 송신 소스와 세션별 구독
    MediaCapture: 카메라/마이크/화면 캡처
    OutgoingTrack: 소스 교체가 가능한 송신 트랙
    TrackTransformPipeline: 송신 비디오 프레임 변환 설치/제거
    TransformState: 픽셀화/글리치 토글 상태

Config:
    ice_config: ICE 서버 설정
    transform_config: 프레임 변환 상수
"""

from .config import ice_config, transform_config, ICEServerConfig, TransformConfig
from .media import LocalMedia, LocalTracks, MediaAcquisitionError, MediaCapture
from .negotiation import (
    NegotiationState,
    PeerRole,
    PeerSession,
    candidate_from_dict,
    candidate_to_dict,
)
from .tracks import OutgoingTrack
from .transforms import (
    GlitchTransform,
    PixelationTransform,
    TrackTransformPipeline,
    TransformState,
    glitch,
    payload_header_size,
    pixelate,
    transform_encoded_frame,
)

__all__ = [
    # Classes
    "PeerSession",
    "PeerRole",
    "NegotiationState",
    "LocalMedia",
    "LocalTracks",
    "MediaCapture",
    "MediaAcquisitionError",
    "OutgoingTrack",
    "TrackTransformPipeline",
    "TransformState",
    "PixelationTransform",
    "GlitchTransform",
    # Functions
    "candidate_from_dict",
    "candidate_to_dict",
    "pixelate",
    "glitch",
    "payload_header_size",
    "transform_encoded_frame",
    # Config
    "ice_config",
    "transform_config",
    "ICEServerConfig",
    "TransformConfig",
]
