"""meshcall 설정.

서버(시그널링 릴레이)와 클라이언트(메시 통화 코어) 설정을 환경변수에서
로드합니다. `config/.env` 파일이 있으면 먼저 읽습니다.

사용 예시:
    from meshcall.config import get_server_settings
    settings = get_server_settings()
    print(settings.PORT)
"""

import logging
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# .env 파일 로드
_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def normalize_log_level(v: str) -> str:
    v_upper = v.upper()
    if v_upper not in VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL은 {VALID_LOG_LEVELS} 중 하나여야 합니다")
    return v_upper


class ServerSettings(BaseSettings):
    """시그널링 서버 설정 클래스."""

    HOST: str = Field(default="0.0.0.0", description="바인드 주소")
    PORT: int = Field(default=8080, description="바인드 포트")

    ENV: str = Field(default="development", description="실행 환경")

    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_DIR: str = Field(default="logs", description="로그 디렉토리")
    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    # 개발 환경에서는 로컬 네트워크 허용
    CORS_ALLOW_ORIGIN_REGEX: str = Field(
        default=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
        description="CORS 허용 origin 정규식"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return normalize_log_level(v)


class ClientSettings(BaseSettings):
    """메시 통화 클라이언트 설정 클래스.

    캡처 장치는 aiortc MediaPlayer(ffmpeg) 입력 이름/포맷으로 지정합니다.
    예) Linux 카메라: /dev/video0 + v4l2, macOS: default:none + avfoundation
    """

    SIGNALING_URL: str = Field(default="ws://localhost:8080/ws", description="시그널링 서버 URL")

    VIDEO_DEVICE: str = Field(default="/dev/video0", description="카메라 입력")
    VIDEO_FORMAT: str = Field(default="v4l2", description="카메라 입력 포맷")
    AUDIO_DEVICE: str = Field(default="default", description="마이크 입력")
    AUDIO_FORMAT: str = Field(default="pulse", description="마이크 입력 포맷")
    DISPLAY_DEVICE: str = Field(default=":0.0", description="화면 공유 입력")
    DISPLAY_FORMAT: str = Field(default="x11grab", description="화면 공유 입력 포맷")

    VIDEO_SIZE: str = Field(default="640x480", description="캡처 해상도")
    FRAMERATE: str = Field(default="30", description="캡처 프레임레이트")

    RECORDINGS_DIR: str = Field(
        default="",
        description="원격 참가자 미디어 녹화 디렉토리 (비어 있으면 녹화하지 않음)"
    )

    PIXELATION_LEVEL: int = Field(default=10, ge=0, le=100, description="픽셀화 기본 강도")

    LOG_LEVEL: str = Field(default="INFO", description="로그 레벨")
    LOG_DIR: str = Field(default="logs", description="로그 디렉토리")
    LOG_RETENTION_DAYS: int = Field(default=60, description="로그 보관 기간 (일)")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return normalize_log_level(v)


@lru_cache
def get_server_settings() -> ServerSettings:
    return ServerSettings()


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
