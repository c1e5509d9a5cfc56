"""SignalingRelay 상태 머신 테스트."""

import json

from meshcall.signaling import ConnectionState

from conftest import FakeSink


def join(room_id, user_id):
    return json.dumps({"type": "join", "payload": {"roomId": room_id, "userId": user_id}})


def offer(target_id, sender, sdp="v=0"):
    return json.dumps({
        "type": "offer",
        "payload": {"targetId": target_id, "from": sender, "offer": {"sdp": sdp, "type": "offer"}},
    })


async def connect_and_join(relay, room_id, user_id):
    sink = FakeSink()
    connection = relay.connect(sink)
    await relay.handle_message(connection, join(room_id, user_id))
    return connection, sink


async def test_join_notifies_existing_members_only(relay):
    _, a = await connect_and_join(relay, "r1", "a")
    _, b = await connect_and_join(relay, "r1", "b")
    _, c = await connect_and_join(relay, "r1", "c")

    assert [(e.type.value, e.payload) for e in a.envelopes()] == [
        ("user-joined", {"userId": "b"}),
        ("user-joined", {"userId": "c"}),
    ]
    assert [e.payload for e in b.envelopes()] == [{"userId": "c"}]
    assert c.messages == []


async def test_join_records_connection_state(relay, registry):
    connection, _ = await connect_and_join(relay, "r1", "a")

    assert connection.state == ConnectionState.JOINED
    assert connection.room_id == "r1"
    assert connection.user_id == "a"
    assert registry.get_room_count("r1") == 1


async def test_second_join_is_ignored(relay, registry):
    connection, _ = await connect_and_join(relay, "r1", "a")

    await relay.handle_message(connection, join("r2", "z"))

    assert connection.room_id == "r1"
    assert connection.user_id == "a"
    assert registry.get_room_count("r2") == 0


async def test_offer_is_forwarded_verbatim_to_target(relay):
    a_conn, a = await connect_and_join(relay, "r1", "a")
    _, b = await connect_and_join(relay, "r1", "b")
    raw = offer("b", "a", sdp="v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\n")

    await relay.handle_message(a_conn, raw)

    assert b.messages == [raw]


async def test_signal_to_unknown_target_is_dropped(relay):
    a_conn, a = await connect_and_join(relay, "r1", "a")
    before = list(a.messages)

    await relay.handle_message(a_conn, offer("ghost", "a"))

    assert a.messages == before


async def test_signal_is_scoped_to_senders_room(relay):
    a_conn, _ = await connect_and_join(relay, "r1", "a")
    _, other = await connect_and_join(relay, "r2", "b")

    await relay.handle_message(a_conn, offer("b", "a"))

    assert other.messages == []


async def test_from_field_is_not_checked(relay):
    a_conn, _ = await connect_and_join(relay, "r1", "a")
    _, b = await connect_and_join(relay, "r1", "b")
    spoofed = offer("b", "somebody-else")

    await relay.handle_message(a_conn, spoofed)

    assert b.messages == [spoofed]


async def test_negotiation_before_join_is_dropped(relay):
    _, b = await connect_and_join(relay, "r1", "b")
    stranger = relay.connect(FakeSink())

    await relay.handle_message(stranger, offer("b", "x"))

    assert b.messages == []
    assert stranger.state == ConnectionState.UNJOINED


async def test_malformed_messages_are_dropped(relay, registry):
    connection = relay.connect(FakeSink())

    for raw in [
        "not json",
        "[]",
        json.dumps({"type": "dance", "payload": {}}),
        json.dumps({"type": "join", "payload": {"roomId": "r1"}}),
        json.dumps({"type": "join", "payload": {"roomId": "", "userId": "a"}}),
        json.dumps({"payload": {}}),
    ]:
        await relay.handle_message(connection, raw)

    assert connection.state == ConnectionState.UNJOINED
    assert registry.get_room_list() == []

    await relay.handle_message(connection, join("r1", "a"))
    assert connection.state == ConnectionState.JOINED


async def test_offer_without_target_is_dropped(relay):
    a_conn, _ = await connect_and_join(relay, "r1", "a")
    _, b = await connect_and_join(relay, "r1", "b")

    await relay.handle_message(a_conn, json.dumps({"type": "offer", "payload": {"from": "a"}}))

    assert b.messages == []


async def test_disconnect_broadcasts_user_left_once(relay, registry):
    _, a = await connect_and_join(relay, "r1", "a")
    b_conn, _ = await connect_and_join(relay, "r1", "b")

    await relay.disconnect(b_conn)
    await relay.disconnect(b_conn)

    left = [e for e in a.envelopes() if e.type.value == "user-left"]
    assert [e.payload for e in left] == [{"userId": "b"}]
    assert b_conn.state == ConnectionState.UNJOINED
    assert registry.get_room_count("r1") == 1


async def test_disconnect_before_join_is_noop(relay):
    _, a = await connect_and_join(relay, "r1", "a")
    stranger = relay.connect(FakeSink())

    await relay.disconnect(stranger)

    assert a.messages == []


async def test_last_leave_deletes_room(relay, registry):
    a_conn, _ = await connect_and_join(relay, "r1", "a")

    await relay.disconnect(a_conn)

    assert registry.get_room_list() == []


async def test_stale_connection_close_does_not_evict_reconnected_id(relay, registry):
    _, watcher = await connect_and_join(relay, "r1", "w")
    old_conn, _ = await connect_and_join(relay, "r1", "a")
    _, new_sink = await connect_and_join(relay, "r1", "a")

    await relay.disconnect(old_conn)

    assert registry.get_room_participants("r1")[-1].sink is new_sink
    assert not [e for e in watcher.envelopes() if e.type.value == "user-left"]
