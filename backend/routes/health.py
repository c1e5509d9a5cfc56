"""상태 조회 API 라우터.

서비스 상태, 활성 룸 목록, 클라이언트용 ICE 서버 설정을 제공합니다.
"""

import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from meshcall.webrtc import ice_config

if TYPE_CHECKING:
    from meshcall.signaling import RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])

# 글로벌 레지스트리 참조 (app.py에서 설정됨)
_registry: Optional["RoomRegistry"] = None


def init_registry(registry: "RoomRegistry"):
    """레지스트리 인스턴스를 초기화합니다."""
    global _registry
    _registry = registry


def _get_registry() -> "RoomRegistry":
    if _registry is None:
        raise HTTPException(status_code=503, detail="Server not ready")
    return _registry


@router.get("/health")
async def health_check():
    """서비스 상태를 확인합니다.

    Returns:
        dict: 상태와 활성 룸/참가자 수
    """
    rooms = _get_registry().get_room_list()
    return {
        "status": "ok",
        "rooms": len(rooms),
        "participants": sum(room["participant_count"] for room in rooms),
    }


@router.get("/rooms")
async def list_rooms():
    """활성 룸 목록을 반환합니다.

    Returns:
        dict: {"rooms": [{"room_id", "participant_count", "participants"}, ...]}
    """
    return {"rooms": _get_registry().get_room_list()}


@router.get("/ice-servers")
async def get_ice_servers():
    """클라이언트용 ICE 서버 목록 (RTCIceServer 형식)."""
    return ice_config.as_json()
