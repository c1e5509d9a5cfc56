"""시그널링 envelope 모델.

클라이언트와 릴레이가 주고받는 모든 메시지는 `{type, payload}` 형태의
envelope 입니다. 릴레이는 payload 내용을 해석하지 않고 그대로 전달하며,
클라이언트는 타입별 payload 뷰(JoinPayload, SignalPayload, PeerPayload)로
필요한 필드만 꺼내 씁니다.

Wire format:
    {"type": "join", "payload": {"roomId": "r1", "userId": "u1"}}
    {"type": "offer", "payload": {"targetId": "u2", "from": "u1", "offer": {...}}}
    {"type": "user-left", "payload": {"userId": "u1"}}
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EnvelopeType(str, Enum):
    """시그널링 메시지 타입."""

    JOIN = "join"
    OFFER = "offer"
    ANSWER = "answer"
    CANDIDATE = "candidate"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"


# 릴레이가 targetId 기준으로 1:1 전달하는 타입
UNICAST_TYPES = frozenset({EnvelopeType.OFFER, EnvelopeType.ANSWER, EnvelopeType.CANDIDATE})


class Envelope(BaseModel):
    """불변 시그널링 envelope.

    Attributes:
        type (EnvelopeType): 메시지 타입
        payload (Dict[str, Any]): 타입별 payload (검증은 payload 뷰에서 수행)

    Examples:
        >>> env = Envelope.from_json('{"type": "user-joined", "payload": {"userId": "u2"}}')
        >>> env.type
        <EnvelopeType.USER_JOINED: 'user-joined'>
        >>> env.to_json()
        '{"type": "user-joined", "payload": {"userId": "u2"}}'
    """

    model_config = ConfigDict(frozen=True)

    type: EnvelopeType
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: str) -> "Envelope":
        """JSON 문자열을 파싱합니다.

        Raises:
            pydantic.ValidationError: JSON 형식이 아니거나 타입/구조가 맞지 않는 경우
        """
        return cls.model_validate_json(raw)

    def to_json(self) -> str:
        """wire 포맷으로 직렬화합니다."""
        return json.dumps({"type": self.type.value, "payload": self.payload})


class JoinPayload(BaseModel):
    """`join` payload."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class PeerPayload(BaseModel):
    """`user-joined` / `user-left` payload."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)


class SignalPayload(BaseModel):
    """`offer` / `answer` / `candidate` payload.

    협상 blob(offer, answer, candidate)은 extra 필드로 그대로 보존됩니다.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    target_id: str = Field(alias="targetId", min_length=1)
    sender: Optional[str] = Field(default=None, alias="from")

    @property
    def blob(self) -> Dict[str, Any]:
        """targetId/from을 제외한 나머지 필드."""
        return dict(self.model_extra or {})


def join_envelope(room_id: str, user_id: str) -> Envelope:
    return Envelope(type=EnvelopeType.JOIN, payload={"roomId": room_id, "userId": user_id})


def user_joined_envelope(user_id: str) -> Envelope:
    return Envelope(type=EnvelopeType.USER_JOINED, payload={"userId": user_id})


def user_left_envelope(user_id: str) -> Envelope:
    return Envelope(type=EnvelopeType.USER_LEFT, payload={"userId": user_id})


def signal_envelope(kind: EnvelopeType, target_id: str, sender: str, blob: Dict[str, Any]) -> Envelope:
    """offer/answer/candidate envelope을 생성합니다.

    Args:
        kind: OFFER, ANSWER, CANDIDATE 중 하나
        target_id: 수신 참가자 ID
        sender: 송신 참가자 ID (payload의 `from`)
        blob: 타입 이름을 키로 하는 협상 데이터 (예: {"offer": {...}})

    Raises:
        ValueError: kind가 1:1 전달 타입이 아닌 경우
    """
    if kind not in UNICAST_TYPES:
        raise ValueError(f"{kind.value} is not a peer-to-peer signaling type")
    payload = {"targetId": target_id, "from": sender}
    payload.update(blob)
    return Envelope(type=kind, payload=payload)
