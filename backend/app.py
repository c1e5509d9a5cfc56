"""FastAPI 메시 통화 시그널링 서버.

풀 메시 WebRTC 화상 통화를 위한 시그널링 릴레이를 제공합니다. 서버는
미디어를 중계하지 않으며, 같은 룸 참가자들이 서로를 발견하고 offer/answer/
ICE candidate를 주고받도록 envelope만 전달합니다.

주요 기능:
    - 룸 기반 참가자 관리 (여러 룸 동시 운영)
    - user-joined / user-left 알림
    - offer / answer / candidate 1:1 전달
    - 상태 조회 및 ICE 서버 설정 API
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - Full mesh: 참가자끼리 직접 연결, 서버는 시그널링만 담당
    - RoomRegistry: 룸 및 참가자 송신 채널 관리
    - SignalingRelay: 연결별 상태 머신과 메시지 라우팅
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from meshcall.config import get_server_settings
from meshcall.logging_config import setup_logging
from meshcall.signaling import RoomRegistry, SignalingRelay
from routes import health_router, init_health_registry, signaling_router, init_signaling_relay

settings = get_server_settings()

# 로그 설정
setup_logging(
    level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR,
    prefix="server",
    retention_days=settings.LOG_RETENTION_DAYS,
)
logger = logging.getLogger(__name__)
logger.info(f"환경: env={settings.ENV}")


# 글로벌 인스턴스
room_registry = RoomRegistry()
signaling_relay = SignalingRelay(room_registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Note:
        - 종료 시 남아 있는 룸 상태를 로그로 남김
        - 열린 WebSocket은 uvicorn이 닫으며, 각 연결의 finally에서 퇴장 처리됨
    """
    logger.info("메시 통화 시그널링 서버 시작 중...")

    yield

    logger.info("서버 종료 중...")
    rooms = room_registry.get_room_list()
    if rooms:
        logger.info(f"종료 시점 활성 룸 {len(rooms)}개: {[room['room_id'] for room in rooms]}")


app = FastAPI(title="Mesh Call Signaling Server", lifespan=lifespan)

# CORS - 개발 환경에서는 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# 라우터에 인스턴스 전달
init_health_registry(room_registry)
init_signaling_relay(signaling_relay)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (Health check).

    Returns:
        dict: 서버 상태 정보를 포함하는 딕셔너리
            - status (str): 서버 상태
            - service (str): 서비스 이름

    Examples:
        >>> response = await root()
        >>> print(response)
        {"status": "ok", "service": "Mesh Call Signaling Server"}
    """
    return {"status": "ok", "service": "Mesh Call Signaling Server"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
