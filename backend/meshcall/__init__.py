"""meshcall package.

풀 메시 WebRTC 화상 통화의 시그널링 릴레이와 클라이언트 코어를 포함합니다.

Modules:
    shared: 시그널링 envelope 모델
    signaling: 룸 레지스트리와 시그널링 릴레이
    webrtc: 원격 참가자별 협상 세션, 로컬 미디어, 프레임 변환
    client: 메시 통화 클라이언트 (meshcall.client 에서 직접 import)
"""

from .shared import Envelope, EnvelopeType
from .signaling import RoomRegistry, SignalingRelay
from .webrtc import PeerSession, TrackTransformPipeline, TransformState, ice_config

__all__ = [
    # Shared
    "Envelope",
    "EnvelopeType",
    # Signaling
    "RoomRegistry",
    "SignalingRelay",
    # WebRTC
    "PeerSession",
    "TrackTransformPipeline",
    "TransformState",
    "ice_config",
]
