"""시그널링 WebSocket 채널 (클라이언트측)."""

import logging
from typing import AsyncIterator

import websockets
from pydantic import ValidationError

from ..shared import Envelope

logger = logging.getLogger(__name__)


class SignalingChannel:
    """릴레이 서버와의 WebSocket 연결.

    envelope 송신과 수신 반복(async for)을 제공합니다. 해석할 수 없는 메시지는
    건너뛰며, 서버가 연결을 닫으면 반복이 끝납니다.

    Examples:
        >>> channel = SignalingChannel("ws://localhost:8080/ws")
        >>> await channel.connect()
        >>> await channel.send(join_envelope("r1", "alice"))
        >>> async for envelope in channel:
        ...     print(envelope.type)
    """

    def __init__(self, url: str):
        self.url = url
        self.websocket = None

    async def connect(self) -> None:
        self.websocket = await websockets.connect(self.url)
        logger.info(f"[Signaling] 연결됨: {self.url}")

    async def send(self, envelope: Envelope) -> None:
        if self.websocket is None:
            raise RuntimeError("시그널링 채널이 연결되지 않았습니다")
        await self.websocket.send(envelope.to_json())

    async def close(self) -> None:
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close()
            logger.info("[Signaling] 연결 종료")

    async def __aiter__(self) -> AsyncIterator[Envelope]:
        websocket = self.websocket
        if websocket is None:
            return
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    logger.debug("[Signaling] 바이너리 메시지 무시")
                    continue
                try:
                    yield Envelope.from_json(message)
                except ValidationError as e:
                    logger.warning(f"[Signaling] 잘못된 메시지 무시: {e.error_count()}개 오류")
        except websockets.ConnectionClosed as e:
            logger.info(f"[Signaling] 서버가 연결을 닫음: {e}")
