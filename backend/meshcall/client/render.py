"""원격 참가자 미디어 렌더링.

원격 참가자마다 ParticipantView 하나를 만들고, 수신 트랙을 소비할 sink를
연결합니다. 기본 sink는 MediaBlackhole(재생 없이 소비), 녹화 디렉토리가
설정되어 있으면 트랙 종류별 MediaRecorder 입니다.
"""

import logging
import os
from typing import Callable, Dict, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaRecorder

logger = logging.getLogger(__name__)

_RECORDING_EXTENSIONS = {"audio": "wav", "video": "mp4"}


class ParticipantView:
    """원격 참가자 1명의 렌더 대상.

    Attributes:
        peer_id (str): 원격 참가자 ID
        recordings_dir (Optional[str]): 녹화 디렉토리. None이면 MediaBlackhole 사용
        tracks (Dict[str, MediaStreamTrack]): 트랙 id → 연결된 트랙
    """

    def __init__(self, peer_id: str, recordings_dir: Optional[str] = None):
        self.peer_id = peer_id
        self.recordings_dir = recordings_dir
        self.tracks: Dict[str, MediaStreamTrack] = {}
        self._sinks: List = []

    async def add_track(self, track: MediaStreamTrack) -> bool:
        """트랙을 소비할 sink를 연결합니다. 이미 연결된 트랙이면 False."""
        if track.id in self.tracks:
            return False
        self.tracks[track.id] = track

        sink = self._create_sink(track.kind)
        sink.addTrack(track)
        self._sinks.append(sink)
        await sink.start()
        logger.info(f"[Render] 참가자 {self.peer_id[:8]} {track.kind} 트랙 연결")
        return True

    async def close(self) -> None:
        sinks, self._sinks = self._sinks, []
        for sink in sinks:
            await sink.stop()
        self.tracks.clear()

    def _create_sink(self, kind: str):
        if not self.recordings_dir:
            return MediaBlackhole()
        os.makedirs(self.recordings_dir, exist_ok=True)
        path = os.path.join(self.recordings_dir, f"{self.peer_id}-{kind}.{_RECORDING_EXTENSIONS[kind]}")
        return MediaRecorder(path)


class RemoteRenderer:
    """참가자 ID → ParticipantView 레지스트리.

    참가자당 view는 정확히 하나만 만들어지고, 같은 참가자의 중복 트랙 이벤트는
    기존 view를 재사용합니다. remove()는 여러 번 호출해도 안전합니다.
    """

    def __init__(self, view_factory: Optional[Callable[[str], ParticipantView]] = None,
                 recordings_dir: Optional[str] = None):
        self.view_factory = view_factory or (lambda peer_id: ParticipantView(peer_id, recordings_dir or None))
        self.views: Dict[str, ParticipantView] = {}

    async def attach(self, peer_id: str, track: MediaStreamTrack) -> ParticipantView:
        view = self.views.get(peer_id)
        if view is None:
            view = self.view_factory(peer_id)
            self.views[peer_id] = view
            logger.info(f"[Render] 참가자 {peer_id[:8]} view 생성")
        await view.add_track(track)
        return view

    async def remove(self, peer_id: str) -> bool:
        view = self.views.pop(peer_id, None)
        if view is None:
            return False
        await view.close()
        logger.info(f"[Render] 참가자 {peer_id[:8]} view 제거")
        return True

    async def close_all(self) -> None:
        for peer_id in list(self.views):
            await self.remove(peer_id)
