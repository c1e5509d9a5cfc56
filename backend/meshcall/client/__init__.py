"""메시 통화 클라이언트 모듈.

Classes:
    MeshClient: 룸 참가, 원격 참가자별 세션 관리, 채팅/효과/화면 공유
    SignalingChannel: 릴레이 서버 WebSocket 채널
    RemoteRenderer: 원격 참가자 미디어 렌더링
    ParticipantView: 원격 참가자 1명의 렌더 대상
"""

from .channel import SignalingChannel
from .mesh_client import MeshClient
from .render import ParticipantView, RemoteRenderer

__all__ = [
    "MeshClient",
    "SignalingChannel",
    "RemoteRenderer",
    "ParticipantView",
]
