"""MeshClient 종단 간 테스트.

실제 SignalingRelay/RoomRegistry 위에서 여러 MeshClient를 돌리고,
미디어 연결은 FakeNetwork 로 대신합니다.
"""

import asyncio

import pytest

from meshcall.client import MeshClient
from meshcall.config import ClientSettings
from meshcall.shared import EnvelopeType, signal_envelope, user_joined_envelope, user_left_envelope
from meshcall.webrtc import MediaAcquisitionError, MediaCapture, NegotiationState, PeerRole, candidate_to_dict

from conftest import FakeView, LoopbackChannel, make_candidate


def connected(client):
    return {peer_id: s.state for peer_id, s in client.sessions.items()}


# ==================== 참가 / 메시 구성 ====================

async def test_three_clients_form_full_mesh(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    c = await mesh.add("c")

    assert connected(a) == {"b": NegotiationState.CONNECTED, "c": NegotiationState.CONNECTED}
    assert connected(b) == {"a": NegotiationState.CONNECTED, "c": NegotiationState.CONNECTED}
    assert connected(c) == {"a": NegotiationState.CONNECTED, "b": NegotiationState.CONNECTED}


async def test_existing_members_initiate_and_joiner_responds(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    c = await mesh.add("c")

    assert a.sessions["b"].role == PeerRole.INITIATOR
    assert b.sessions["a"].role == PeerRole.RESPONDER
    assert {s.role for s in c.sessions.values()} == {PeerRole.RESPONDER}
    # joiner never sends an offer
    assert not [e for e in c.channel.sent if e.type == EnvelopeType.OFFER]


async def test_remote_media_gets_one_view_per_participant(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    await mesh.add("c")

    assert set(a.renderer.views) == {"b", "c"}
    view = a.renderer.views["b"]
    assert isinstance(view, FakeView)
    assert sorted(t.kind for t in view.tracks) == ["audio", "video"]


async def test_chat_fans_out_to_open_channels(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    await mesh.add("c")

    assert a.send_chat("hello") == 2
    assert b.send_chat("hey") == 2

    assert sorted(mesh.chats) == [
        ("a", "b", "hey"),
        ("b", "a", "hello"),
        ("c", "a", "hello"),
        ("c", "b", "hey"),
    ]


async def test_chat_with_nobody_connected(mesh):
    a = await mesh.add("a")

    assert a.send_chat("anyone?") == 0


async def test_join_fails_before_signaling_when_media_unavailable(relay, registry, network):
    def no_devices(device, format=None, options=None):
        raise OSError("device busy")

    channel = LoopbackChannel(relay)
    client = MeshClient("a", channel, MediaCapture(ClientSettings(), player_factory=no_devices),
                        connection_factory=network.factory)

    with pytest.raises(MediaAcquisitionError):
        await client.join("r1")

    assert channel.sent == []
    assert registry.get_room_list() == []
    assert client.room_id is None


async def test_join_twice_is_rejected(mesh):
    a = await mesh.add("a")

    with pytest.raises(RuntimeError):
        await a.join("r2")


# ==================== 퇴장 ====================

async def test_disconnect_tears_down_peer_on_all_clients(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    c = await mesh.add("c")
    a_to_b = a.sessions["b"]
    b_view = a.renderer.views["b"]

    await b.channel.close()
    await mesh.settle()

    assert "b" not in a.sessions
    assert "b" not in c.sessions
    assert a_to_b.closed and a_to_b.failure is None
    assert a_to_b.pc.closed
    assert "b" not in a.renderer.views
    assert b_view.closed
    assert a.send_chat("still here") == 1


async def test_duplicate_user_left_is_noop(mesh):
    a = await mesh.add("a")
    await mesh.add("b")

    await a.handle_envelope(user_left_envelope("b"))
    await a.handle_envelope(user_left_envelope("b"))
    await a.handle_envelope(user_left_envelope("never-here"))

    assert a.sessions == {}
    assert a.renderer.views == {}


async def test_hangup_closes_everything_and_notifies_others(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    sessions = list(a.sessions.values())

    await a.hangup()
    await mesh.settle()

    assert a.sessions == {}
    assert all(s.closed for s in sessions)
    assert a.local_media is None
    assert "a" not in b.sessions


# ==================== 시그널링 예외 상황 ====================

async def test_user_joined_for_live_peer_replaces_session(mesh):
    a = await mesh.add("a")
    b = await mesh.add("b")
    old = a.sessions["b"]

    await a.handle_envelope(user_joined_envelope("b"))
    await mesh.settle()

    assert old.closed
    assert a.sessions["b"] is not old
    assert a.sessions["b"].state == NegotiationState.CONNECTED
    assert b.sessions["a"].state == NegotiationState.CONNECTED
    assert set(a.renderer.views) == {"b"}


async def test_candidate_for_unknown_peer_is_dropped(mesh):
    a = await mesh.add("a")

    await a.handle_envelope(signal_envelope(
        EnvelopeType.CANDIDATE, "a", "zed", {"candidate": candidate_to_dict(make_candidate(9))}
    ))
    await a.handle_envelope(signal_envelope(
        EnvelopeType.ANSWER, "a", "zed", {"answer": {"sdp": "x", "type": "answer"}}
    ))

    assert a.sessions == {}


async def test_offer_for_someone_else_is_ignored(mesh):
    a = await mesh.add("a")

    await a.handle_envelope(signal_envelope(
        EnvelopeType.OFFER, "not-a", "zed", {"offer": {"sdp": "x", "type": "offer"}}
    ))

    assert a.sessions == {}


async def test_malformed_payloads_are_ignored(mesh):
    a = await mesh.add("a")
    await mesh.add("b")

    from meshcall.shared import Envelope

    for raw in [
        '{"type": "user-joined", "payload": {}}',
        '{"type": "offer", "payload": {"from": "b"}}',
        '{"type": "offer", "payload": {"targetId": "a"}}',
        '{"type": "offer", "payload": {"targetId": "a", "from": "b"}}',
        '{"type": "join", "payload": {"roomId": "r1", "userId": "x"}}',
    ]:
        await a.handle_envelope(Envelope.from_json(raw))

    assert set(a.sessions) == {"b"}
    assert a.sessions["b"].state == NegotiationState.CONNECTED


# ==================== 비디오 효과 ====================

async def test_toggles_reinstall_transform_on_every_session(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    await mesh.add("c")
    senders = [s.video_sender for s in a.sessions.values()]

    assert a.toggle_pixelation() is True
    assert all("_next_encoded_frame" in vars(s) for s in senders)
    assert all(len(s.replaced) == 1 for s in senders)

    assert a.set_pixelation_level(42) == 42
    assert a.set_pixelation_level(500) == 100

    assert a.toggle_glitch() is True
    assert a.transform_state.pixelation is False
    assert all("_next_encoded_frame" in vars(s) for s in senders)

    assert a.toggle_glitch() is False
    assert all("_next_encoded_frame" not in vars(s) for s in senders)

    frame = await senders[0]._next_encoded_frame(None)
    assert frame.payloads == senders[0].payloads


async def test_effect_state_applies_to_sessions_created_later(mesh):
    a = await mesh.add("a")
    a.toggle_pixelation()

    await mesh.add("b")

    assert "_next_encoded_frame" in vars(a.sessions["b"].video_sender)


# ==================== 음소거 ====================

def outgoing_enabled(client, kind):
    return {
        peer_id: [sender.track.enabled for sender in session.pc.senders if sender.kind == kind]
        for peer_id, session in client.sessions.items()
    }


async def test_microphone_and_camera_toggles_apply_to_every_session(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    await mesh.add("c")

    assert a.toggle_microphone() is False
    assert outgoing_enabled(a, "audio") == {"b": [False], "c": [False]}
    assert outgoing_enabled(a, "video") == {"b": [True], "c": [True]}

    assert a.toggle_camera() is False
    assert outgoing_enabled(a, "video") == {"b": [False], "c": [False]}

    assert a.toggle_microphone() is True
    assert outgoing_enabled(a, "audio") == {"b": [True], "c": [True]}


async def test_mute_state_applies_to_sessions_created_later(mesh):
    a = await mesh.add("a")
    a.toggle_camera()

    await mesh.add("b")

    assert outgoing_enabled(a, "video") == {"b": [False]}
    assert outgoing_enabled(a, "audio") == {"b": [True]}


async def test_camera_stays_muted_across_screen_share(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    a.toggle_camera()

    assert await a.toggle_screen_share() is True

    assert outgoing_enabled(a, "video") == {"b": [False]}


async def test_mute_toggle_requires_joined_client(relay):
    client = MeshClient("x", LoopbackChannel(relay), MediaCapture(ClientSettings()))

    with pytest.raises(RuntimeError):
        client.toggle_microphone()


# ==================== 화면 공유 ====================

async def test_screen_share_swaps_video_on_all_sessions(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    await mesh.add("c")
    previews = []
    a.on_local_preview = previews.append
    camera = a.local_media.video
    outgoing = [s.video_sender.track for s in a.sessions.values()]

    assert await a.toggle_screen_share() is True

    screen = a.local_media.video
    assert screen is not camera
    assert previews == [screen]
    assert camera.readyState == "ended"
    assert all(track.readyState == "live" for track in outgoing)
    assert [s.video_sender.track for s in a.sessions.values()] == outgoing

    assert await a.toggle_screen_share() is False

    assert screen.readyState == "ended"
    assert a.local_media.video not in (camera, screen)
    assert previews[-1] is a.local_media.video
    assert not a.screen_sharing


async def test_screen_ending_on_its_own_restores_camera(mesh):
    a = await mesh.add("a")
    await mesh.add("b")
    await a.toggle_screen_share()
    screen = a.local_media.video

    screen.stop()
    await asyncio.gather(*list(a._tasks))

    assert not a.screen_sharing
    assert a.local_media.video is not screen
    assert a.local_media.video.readyState == "live"
