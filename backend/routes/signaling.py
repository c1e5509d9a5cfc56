"""시그널링 WebSocket 라우터.

Starlette WebSocket을 SignalingRelay의 MessageSink로 감싸고, 연결마다
수신 루프를 돌며 텍스트 프레임을 릴레이에 전달합니다. 메시지 해석과
룸 라우팅은 모두 SignalingRelay가 담당합니다.
"""

import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

if TYPE_CHECKING:
    from meshcall.signaling import SignalingRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 릴레이 참조 (app.py에서 설정됨)
_relay: Optional["SignalingRelay"] = None


def init_relay(relay: "SignalingRelay"):
    """릴레이 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 릴레이 참조를 설정합니다.
    """
    global _relay
    _relay = relay
    logger.info("시그널링 라우터 릴레이 초기화 완료")


class WebSocketSink:
    """Starlette WebSocket → MessageSink 어댑터."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)


@router.websocket("/ws")
@router.websocket("/")
async def websocket_endpoint(websocket: WebSocket):
    """시그널링 WebSocket 엔드포인트.

    처리하는 메시지 타입 (모두 `{type, payload}` envelope):
        - join: 룸 참가 (roomId, userId)
        - offer / answer / candidate: payload.targetId 참가자에게 그대로 전달

    서버가 보내는 메시지:
        - user-joined: 새 참가자 알림 (기존 참가자에게만)
        - user-left: 참가자 퇴장 알림

    바이너리 프레임은 무시하며, 잘못된 메시지로 연결을 끊지 않습니다.
    """
    if _relay is None:
        logger.error("릴레이가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    connection = _relay.connect(WebSocketSink(websocket))
    logger.info(f"클라이언트 연결됨: {websocket.client}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            text = message.get("text")
            if text is None:
                logger.debug("바이너리 프레임 무시")
                continue

            await _relay.handle_message(connection, text)

    except Exception as e:
        logger.error(f"WebSocket 연결 중 오류: {e}", exc_info=True)
    finally:
        await _relay.disconnect(connection)
        logger.info(f"클라이언트 정리 완료: user={connection.user_id}, room={connection.room_id}")
