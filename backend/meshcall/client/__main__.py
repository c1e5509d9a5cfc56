"""메시 통화 터미널 클라이언트.

사용법:
    python -m meshcall.client --room r1 --user alice

명령:
    /pixelate   픽셀화 켜기/끄기
    /level N    픽셀화 강도 (0~100)
    /glitch     글리치 켜기/끄기
    /share      화면 공유 켜기/끄기
    /mic        마이크 음소거 켜기/끄기
    /cam        카메라 끄기/켜기
    /peers      연결된 참가자 목록
    /quit       종료
    그 외 입력은 채팅으로 전송
"""

import argparse
import asyncio
import uuid

from ..config import get_client_settings
from ..logging_config import setup_logging
from ..webrtc import MediaAcquisitionError, MediaCapture
from .channel import SignalingChannel
from .mesh_client import MeshClient
from .render import RemoteRenderer


async def interactive_loop(client: MeshClient) -> None:
    while True:
        user_input = (await asyncio.to_thread(input, "> ")).strip()

        if not user_input:
            continue

        if user_input == "/quit":
            print("종료합니다.")
            break

        if user_input == "/pixelate":
            enabled = client.toggle_pixelation()
            print(f"픽셀화: {'ON' if enabled else 'OFF'}")
        elif user_input.startswith("/level"):
            parts = user_input.split()
            if len(parts) != 2 or not parts[1].lstrip("-").isdigit():
                print("사용법: /level N")
                continue
            print(f"픽셀화 강도: {client.set_pixelation_level(int(parts[1]))}")
        elif user_input == "/glitch":
            enabled = client.toggle_glitch()
            print(f"글리치: {'ON' if enabled else 'OFF'}")
        elif user_input == "/mic":
            enabled = client.toggle_microphone()
            print(f"마이크: {'ON' if enabled else 'OFF'}")
        elif user_input == "/cam":
            enabled = client.toggle_camera()
            print(f"카메라: {'ON' if enabled else 'OFF'}")
        elif user_input == "/share":
            try:
                sharing = await client.toggle_screen_share()
                print(f"화면 공유: {'ON' if sharing else 'OFF'}")
            except MediaAcquisitionError as e:
                print(f"화면 공유 실패: {e}")
        elif user_input == "/peers":
            for peer_id, session in client.sessions.items():
                print(f"  {peer_id}: {session.state.value}")
        else:
            sent = client.send_chat(user_input)
            print(f"(전송: {sent}명)")


async def main():
    parser = argparse.ArgumentParser(description="메시 화상 통화 클라이언트")
    parser.add_argument("--room", "-r", type=str, required=True, help="참가할 룸 ID")
    parser.add_argument("--user", "-u", type=str, default=None, help="참가자 ID (미지정시 랜덤)")
    parser.add_argument("--url", type=str, default=None, help="시그널링 서버 URL (기본: SIGNALING_URL)")
    args = parser.parse_args()

    settings = get_client_settings()
    setup_logging(
        level=settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR,
        prefix="client",
        retention_days=settings.LOG_RETENTION_DAYS,
    )

    user_id = args.user or uuid.uuid4().hex[:8]
    channel = SignalingChannel(args.url or settings.SIGNALING_URL)
    client = MeshClient(
        user_id,
        channel,
        MediaCapture(settings),
        pixelation_level=settings.PIXELATION_LEVEL,
        renderer=RemoteRenderer(recordings_dir=settings.RECORDINGS_DIR or None),
    )
    client.on_chat_message = lambda peer_id, text: print(f"\n[{peer_id}] {text}")

    await channel.connect()
    try:
        await client.join(args.room)
    except MediaAcquisitionError as e:
        print(f"미디어 장치를 열 수 없습니다: {e}")
        await channel.close()
        return

    print(f"룸 '{args.room}'에 {user_id}(으)로 참가했습니다. /quit 로 종료")
    receiver = asyncio.create_task(client.run())
    try:
        await interactive_loop(client)
    finally:
        receiver.cancel()
        await client.hangup()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
