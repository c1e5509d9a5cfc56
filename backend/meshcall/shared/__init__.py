"""시그널링 서버와 클라이언트가 함께 쓰는 와이어 모델.

가볍고 공통적인 데이터 모델만 둡니다. 전송 계층 로직이나 무거운
의존성(aiortc 등)은 이 패키지에 넣지 않습니다.
"""

from .envelope import (
    Envelope,
    EnvelopeType,
    JoinPayload,
    PeerPayload,
    SignalPayload,
    UNICAST_TYPES,
    join_envelope,
    signal_envelope,
    user_joined_envelope,
    user_left_envelope,
)

__all__ = [
    "Envelope",
    "EnvelopeType",
    "JoinPayload",
    "PeerPayload",
    "SignalPayload",
    "UNICAST_TYPES",
    "join_envelope",
    "signal_envelope",
    "user_joined_envelope",
    "user_left_envelope",
]
