"""시그널링 모듈.

룸 레지스트리와 시그널링 릴레이 상태 머신을 제공합니다.

Classes:
    RoomRegistry: 룸 및 참가자 송신 채널 관리
    Participant: 참가자 데이터 클래스
    MessageSink: 송신 채널 프로토콜
    SignalingRelay: 연결별 Unjoined/Joined 상태 머신과 메시지 전달
    RelayConnection: 연결 상태 데이터 클래스
"""

from .room_registry import RoomRegistry, Participant, MessageSink
from .relay import SignalingRelay, RelayConnection, ConnectionState

__all__ = [
    "RoomRegistry",
    "Participant",
    "MessageSink",
    "SignalingRelay",
    "RelayConnection",
    "ConnectionState",
]
