"""룸 기반 참가자 레지스트리 모듈.

이 모듈은 시그널링 릴레이의 룸(방)과 참가자 관리를 담당합니다.
여러 개의 독립적인 룸을 동시에 관리하며, 각 룸의 참가자별 송신 채널(sink)을
추적합니다. 프로토콜 로직은 없으며 순수한 bookkeeping과 전송만 수행합니다.

주요 기능:
    - 룸 생성 및 삭제 (자동 생성/비어있을 때 자동 삭제)
    - 참가자 입장/퇴장 관리
    - 룸 브로드캐스트 (특정 참가자 제외) 및 1:1 전송
    - 룸 상태 조회 (참가자 수, 참가자 목록)

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - 룸 ID → 참가자 맵
    - _lock: asyncio.Lock - 룸 맵 변경과 스냅샷을 직렬화
    - 전송은 잠금 밖에서 스냅샷을 대상으로 수행 (느린 소켓이 다른 룸을 막지 않음)

Classes:
    MessageSink: 참가자 송신 채널 프로토콜
    Participant: 참가자 정보를 담는 데이터 클래스
    RoomRegistry: 룸 및 참가자 관리 클래스

Examples:
    기본 사용법:
        >>> registry = RoomRegistry()
        >>> await registry.join("r1", "u1", sink)
        >>> await registry.unicast("r1", "u1", '{"type": "offer", ...}')
        True

See Also:
    relay.py: 시그널링 상태 머신
    routes/signaling.py: WebSocket 엔드포인트
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Union

from ..shared import Envelope

logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    """참가자에게 메시지를 보내는 송신 채널.

    FastAPI WebSocket 어댑터(routes/signaling.py)와 테스트용 in-memory sink가
    이 프로토콜을 구현합니다.
    """

    @property
    def is_open(self) -> bool:
        ...

    async def send_text(self, data: str) -> None:
        ...


@dataclass
class Participant:
    """룸에 참가한 참가자.

    Attributes:
        participant_id (str): 클라이언트가 정한 참가자 ID (룸 내에서 고유하다고 가정)
        sink (MessageSink): 참가자 연결의 송신 채널. 연결이 열려 있는 동안만 유효
    """
    participant_id: str
    sink: MessageSink


class RoomRegistry:
    """룸과 참가자를 관리하는 레지스트리.

    Attributes:
        rooms (Dict[str, Dict[str, Participant]]): 룸 ID를 키로 하는 룸 딕셔너리

    Thread Safety:
        - asyncio 단일 이벤트 루프에서 동작
        - join/leave와 브로드캐스트 대상 스냅샷은 하나의 asyncio.Lock으로 직렬화

    Note:
        - 같은 참가자 ID가 서로 다른 룸에 동시에 들어가는 것은 막지 않음
        - 전송은 best-effort: 닫힌 sink는 건너뛰고, 큐잉이나 재시도 없음
    """

    def __init__(self):
        # room_id -> {participant_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room_id: str, participant_id: str, sink: MessageSink) -> None:
        """참가자를 룸에 등록합니다.

        룸이 없으면 생성합니다. 같은 ID가 이미 있으면 기존 sink를 닫지 않고
        덮어씁니다 (last writer wins).

        Args:
            room_id (str): 참가할 룸 ID
            participant_id (str): 참가자 ID
            sink (MessageSink): 참가자의 송신 채널
        """
        async with self._lock:
            # Create room if doesn't exist
            if room_id not in self.rooms:
                self.rooms[room_id] = {}
                logger.info(f"Room '{room_id}' created")

            room = self.rooms[room_id]
            existing = room.get(participant_id)
            if existing is not None and existing.sink is not sink:
                logger.warning(f"참가자 '{participant_id}' 중복 입장 - 룸 '{room_id}'의 기존 연결을 덮어씀")

            room[participant_id] = Participant(participant_id=participant_id, sink=sink)
            logger.info(f"Participant '{participant_id}' joined room '{room_id}'. "
                        f"Room has {len(room)} participants")

    async def leave(self, room_id: str, participant_id: str, sink: Optional[MessageSink] = None) -> bool:
        """참가자를 룸에서 제거합니다.

        Args:
            room_id (str): 룸 ID
            participant_id (str): 퇴장할 참가자 ID
            sink (Optional[MessageSink]): 지정하면 등록된 sink가 이 sink일 때만 제거.
                같은 ID로 재접속한 새 연결을 오래된 연결의 종료가 지우지 않도록 함

        Returns:
            bool: 실제로 제거했으면 True. 없거나 다른 sink가 등록되어 있으면 False

        Note:
            - 두 번 호출해도 안전함 (두 번째는 no-op)
            - 마지막 참가자가 나가면 룸이 삭제됨
        """
        async with self._lock:
            room = self.rooms.get(room_id)
            if not room or participant_id not in room:
                return False

            if sink is not None and room[participant_id].sink is not sink:
                logger.info(f"참가자 '{participant_id}'는 새 연결로 대체됨, 퇴장 처리 생략")
                return False

            del room[participant_id]

            # Delete room if empty
            if not room:
                del self.rooms[room_id]
                logger.info(f"Room '{room_id}' deleted (empty)")
            else:
                logger.info(f"Participant '{participant_id}' left room '{room_id}'. "
                            f"Room has {len(room)} participants")
            return True

    async def broadcast_except(
        self,
        room_id: str,
        envelope: Union[Envelope, str],
        exclude: Optional[str] = None
    ) -> int:
        """룸의 참가자들에게 envelope을 브로드캐스트합니다.

        user-joined / user-left 알림 전용입니다. 호출 시점에 룸에 있는
        참가자 중 `exclude`를 제외한 모두에게 전송합니다.

        Args:
            room_id (str): 룸 ID
            envelope (Union[Envelope, str]): 전송할 envelope (또는 이미 직렬화된 문자열)
            exclude (Optional[str]): 받지 않을 참가자 ID

        Returns:
            int: 실제로 전송된 참가자 수
        """
        data = envelope.to_json() if isinstance(envelope, Envelope) else envelope

        async with self._lock:
            targets = [p for p in self.rooms.get(room_id, {}).values()
                       if p.participant_id != exclude]

        delivered = 0
        for participant in targets:
            if await self._deliver(participant, data):
                delivered += 1
        return delivered

    async def unicast(self, room_id: str, target_id: str, envelope: Union[Envelope, str]) -> bool:
        """룸의 특정 참가자에게 envelope을 전송합니다.

        Args:
            room_id (str): 룸 ID
            target_id (str): 수신 참가자 ID
            envelope (Union[Envelope, str]): 전송할 envelope (또는 원본 문자열)

        Returns:
            bool: 대상이 있고 전송했으면 True. 대상이 없으면 False (에러 없음)
        """
        async with self._lock:
            participant = self.rooms.get(room_id, {}).get(target_id)

        if participant is None:
            logger.debug(f"룸 '{room_id}'에 대상 '{target_id}' 없음, 메시지 폐기")
            return False

        data = envelope.to_json() if isinstance(envelope, Envelope) else envelope
        return await self._deliver(participant, data)

    async def _deliver(self, participant: Participant, data: str) -> bool:
        if not participant.sink.is_open:
            logger.debug(f"참가자 '{participant.participant_id}' 연결이 열려있지 않음, 전송 생략")
            return False
        try:
            await participant.sink.send_text(data)
            return True
        except Exception as e:
            logger.error(f"참가자 '{participant.participant_id}'에 전송 중 오류: {e}")
            return False

    def get_room_participants(self, room_id: str) -> List[Participant]:
        """특정 룸의 모든 참가자 목록을 반환합니다.

        룸이 없으면 빈 리스트를 반환합니다.
        """
        return list(self.rooms.get(room_id, {}).values())

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 딕셔너리의 리스트
                - room_id (str): 룸 ID
                - participant_count (int): 현재 참가자 수
                - participants (List[str]): 참가자 ID 리스트
        """
        return [
            {
                "room_id": room_id,
                "participant_count": len(participants),
                "participants": list(participants.keys()),
            }
            for room_id, participants in self.rooms.items()
        ]

    def get_room_count(self, room_id: str) -> int:
        """특정 룸의 현재 참가자 수를 반환합니다. 룸이 없으면 0."""
        return len(self.rooms.get(room_id, {}))
