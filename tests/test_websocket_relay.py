import time


WORKOUT = {
    "event_type": "workout.updated",
    "user_id": "u1",
    "data": {"sport_id": 1, "score": {"distance_meter": 1000, "kilojoule": 500, "strain": 9.1}},
}


def _join(ws, user_id="u1"):
    ws.send_json({"type": "join_user", "user_id": user_id})
    msg = ws.receive_json()
    assert msg["type"] == "joined"
    return msg


def test_joined_client_receives_workout_update(client, post_webhook):
    with client.websocket_connect("/ws") as ws:
        joined = _join(ws)
        assert joined["data"]["state"] is None

        assert post_webhook(WORKOUT).status_code == 200
        msg = ws.receive_json()

    assert msg["type"] == "workout_update"
    assert msg["data"]["user_id"] == "u1"
    assert msg["data"]["event"]["distance_meters"] == 1000
    assert msg["data"]["metrics"]["estimated_steps"] == 1300
    assert msg["data"]["metrics"]["max_strain"] == 9.1


def test_join_after_broadcast_gets_snapshot_not_the_push(client, post_webhook):
    assert post_webhook(WORKOUT).status_code == 200
    with client.websocket_connect("/ws") as ws:
        joined = _join(ws)
        assert len(joined["data"]["state"]["workouts"]) == 1
        assert joined["data"]["metrics"]["estimated_steps"] == 1300
        ws.send_json({"type": "ping", "ts": 1})
        assert ws.receive_json() == {"type": "pong", "ts": 1}


def test_updates_are_scoped_to_the_joined_user(client, post_webhook):
    with client.websocket_connect("/ws") as other:
        _join(other, "u2")
        assert post_webhook(WORKOUT).status_code == 200
        other.send_json({"type": "ping", "ts": 2})
        assert other.receive_json()["type"] == "pong"


def test_all_sessions_of_a_user_receive_the_update(client, post_webhook):
    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        _join(a)
        _join(b)
        post_webhook({"event_type": "sleep.updated", "user_id": "u1",
                      "data": {"score": {"stage_summary": {"total_in_bed_time_milli": 28_800_000}}}})
        for ws in (a, b):
            msg = ws.receive_json()
            assert msg["type"] == "sleep_update"
            assert msg["data"]["metrics"]["sleep_hours"] == 8


def test_leave_stops_updates(client, post_webhook):
    with client.websocket_connect("/ws") as ws:
        _join(ws)
        ws.send_json({"type": "leave"})
        assert ws.receive_json() == {"type": "left", "data": {"user_id": "u1"}}
        post_webhook(WORKOUT)
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_disconnect_leaves_group(client, runtime):
    with client.websocket_connect("/ws") as ws:
        _join(ws)
        assert len(runtime.sessions.group_members("u1")) == 1
    deadline = time.monotonic() + 2
    while runtime.sessions.session_count() and time.monotonic() < deadline:
        time.sleep(0.01)
    assert runtime.sessions.group_members("u1") == []
    assert runtime.sessions.session_count() == 0


def test_bad_client_messages_get_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["data"]["code"] == "invalid_json"
        ws.send_json({"type": "join_user"})
        assert ws.receive_json()["data"]["code"] == "invalid_user_id"
        ws.send_json({"type": "dance"})
        assert ws.receive_json()["data"]["code"] == "unknown_message"
        ws.send_bytes(b"\x00\x01")
        assert ws.receive_json()["data"]["code"] == "invalid_json"
        ws.send_bytes(b"\xff\xfe")
        assert ws.receive_json()["data"]["code"] == "invalid_json"
        ws.send_bytes(b"[1, 2]")
        assert ws.receive_json()["data"]["code"] == "invalid_json"
        # the connection survives bad frames
        ws.send_bytes(b'{"type": "ping", "ts": 3}')
        assert ws.receive_json() == {"type": "pong", "ts": 3}


def test_join_falls_back_to_camel_case_user_id(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "join_user", "user_id": None, "userId": "u1"})
        msg = ws.receive_json()
    assert msg["type"] == "joined"
    assert msg["data"]["user_id"] == "u1"
