"""WebRTC 모듈 설정.

STUN/TURN 서버 등 ICE 관련 환경변수 기반 설정과, 프레임 변환 상수.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv
from aiortc import RTCConfiguration, RTCIceServer

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_json(self) -> List[dict]:
        """클라이언트에 전달할 ICE 서버 목록 (브라우저 RTCIceServer 형식)."""
        ice_servers = []
        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": self.STUN_SERVER_URL})
        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": stun_url})
        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL
            })
        return ice_servers

    def as_rtc_configuration(self) -> RTCConfiguration:
        """aiortc RTCPeerConnection 생성용 설정."""
        ice_servers = [RTCIceServer(urls=[stun_url]) for stun_url in self.DEFAULT_STUN_SERVERS]
        if self.STUN_SERVER_URL:
            ice_servers.insert(0, RTCIceServer(urls=[self.STUN_SERVER_URL]))
        if self.has_turn_server:
            ice_servers.append(RTCIceServer(
                urls=[self.TURN_SERVER_URL],
                username=self.TURN_USERNAME,
                credential=self.TURN_CREDENTIAL
            ))
        return RTCConfiguration(iceServers=ice_servers)


# ============================================================
# 프레임 변환 설정
# ============================================================

@dataclass(frozen=True)
class TransformConfig:
    """인코딩된 프레임 변환 상수."""

    # 픽셀화: N 프레임마다 1개 처리
    PIXELATION_FRAME_INTERVAL: int = 5

    # 픽셀화: 바이트 청크 크기
    PIXELATION_STEP: int = 10

    # 픽셀화 강도 범위
    PIXELATION_LEVEL_MIN: int = 0
    PIXELATION_LEVEL_MAX: int = 100

    # 글리치: 프레임당 덮어쓸 바이트 수
    GLITCH_CORRUPTIONS: int = 5


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
transform_config = TransformConfig()


logger.debug(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.debug(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
