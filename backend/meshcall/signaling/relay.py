"""시그널링 릴레이 모듈.

클라이언트 연결마다 `Unjoined → Joined` 2-상태 머신을 유지하며,
envelope 타입에 따라 RoomRegistry를 갱신하고 메시지를 전달합니다.

처리 규칙:
    - join (Unjoined): 룸 등록, 기존 참가자들에게 user-joined 브로드캐스트
    - offer / answer / candidate (Joined): payload.targetId에게 원본 그대로 전달
    - 연결 종료 (Joined): 룸에서 제거, 남은 참가자들에게 user-left 브로드캐스트
    - 그 외 (잘못된 JSON, 알 수 없는 타입, targetId 누락 등): 조용히 폐기

릴레이는 잘못된 메시지 때문에 연결을 끊지 않으며, payload의 `from`이
실제 송신자와 일치하는지 검증하지 않습니다.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from ..shared import (
    Envelope,
    EnvelopeType,
    JoinPayload,
    SignalPayload,
    UNICAST_TYPES,
    user_joined_envelope,
    user_left_envelope,
)
from .room_registry import MessageSink, RoomRegistry

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNJOINED = "unjoined"
    JOINED = "joined"


@dataclass
class RelayConnection:
    """릴레이에 연결된 클라이언트 하나의 상태.

    Attributes:
        sink (MessageSink): 이 클라이언트로 보내는 송신 채널
        state (ConnectionState): 현재 상태
        room_id (Optional[str]): join 이후 기록되는 룸 ID
        user_id (Optional[str]): join 이후 기록되는 참가자 ID
    """
    sink: MessageSink
    state: ConnectionState = ConnectionState.UNJOINED
    room_id: Optional[str] = None
    user_id: Optional[str] = None


class SignalingRelay:
    """여러 룸을 다중화하는 시그널링 릴레이.

    전송 계층과 무관하게 동작하며, FastAPI WebSocket 라우터가 연결마다
    connect() → handle_message() 반복 → disconnect() 순서로 호출합니다.

    Examples:
        >>> relay = SignalingRelay(RoomRegistry())
        >>> conn = relay.connect(sink)
        >>> await relay.handle_message(conn, '{"type": "join", "payload": {"roomId": "r1", "userId": "u1"}}')
        >>> conn.state
        <ConnectionState.JOINED: 'joined'>
        >>> await relay.disconnect(conn)
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    def connect(self, sink: MessageSink) -> RelayConnection:
        return RelayConnection(sink=sink)

    async def handle_message(self, connection: RelayConnection, raw: str) -> None:
        """클라이언트가 보낸 메시지 하나를 처리합니다.

        Args:
            connection (RelayConnection): 메시지를 보낸 연결
            raw (str): 수신한 원본 텍스트
        """
        try:
            envelope = Envelope.from_json(raw)
        except ValidationError as e:
            logger.debug(f"잘못된 envelope 폐기: {e.error_count()}개 오류")
            return

        if envelope.type == EnvelopeType.JOIN:
            await self._handle_join(connection, envelope)
        elif envelope.type in UNICAST_TYPES:
            await self._handle_signal(connection, envelope, raw)
        else:
            logger.debug(f"처리하지 않는 메시지 타입: {envelope.type.value}")

    async def _handle_join(self, connection: RelayConnection, envelope: Envelope) -> None:
        if connection.state == ConnectionState.JOINED:
            logger.warning(f"이미 룸 '{connection.room_id}'에 입장한 연결의 join 요청 무시 "
                           f"(user={connection.user_id})")
            return

        try:
            join = JoinPayload.model_validate(envelope.payload)
        except ValidationError:
            logger.debug("roomId/userId 없는 join 폐기")
            return

        connection.room_id = join.room_id
        connection.user_id = join.user_id
        connection.state = ConnectionState.JOINED

        await self.registry.join(join.room_id, join.user_id, connection.sink)

        # 기존 참가자들에게만 알림 (새 참가자에게 기존 목록은 보내지 않음)
        notified = await self.registry.broadcast_except(
            join.room_id,
            user_joined_envelope(join.user_id),
            exclude=join.user_id
        )
        logger.info(f"User {join.user_id} joined room {join.room_id} (알림 {notified}명)")

    async def _handle_signal(self, connection: RelayConnection, envelope: Envelope, raw: str) -> None:
        if connection.state != ConnectionState.JOINED:
            logger.debug(f"룸 입장 전 {envelope.type.value} 메시지 폐기")
            return

        try:
            signal = SignalPayload.model_validate(envelope.payload)
        except ValidationError:
            logger.debug(f"targetId 없는 {envelope.type.value} 메시지 폐기")
            return

        # Forward the original text so the envelope reaches the target unmodified
        delivered = await self.registry.unicast(connection.room_id, signal.target_id, raw)
        logger.debug(f"{envelope.type.value}: {connection.user_id} -> {signal.target_id} "
                     f"({'전달' if delivered else '대상 없음'})")

    async def disconnect(self, connection: RelayConnection) -> None:
        """연결 종료를 처리합니다.

        Joined 상태였다면 룸에서 제거하고 남은 참가자들에게 user-left를
        브로드캐스트합니다. 두 번 호출해도 안전합니다.
        """
        if connection.state != ConnectionState.JOINED:
            return

        room_id, user_id = connection.room_id, connection.user_id
        connection.state = ConnectionState.UNJOINED

        removed = await self.registry.leave(room_id, user_id, sink=connection.sink)
        if not removed:
            return

        await self.registry.broadcast_except(room_id, user_left_envelope(user_id), exclude=user_id)
        logger.info(f"User {user_id} left room {room_id}")
