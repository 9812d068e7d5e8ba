import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from config import settings
from main import app
from routers.ws_router import ConnectionManager, sessions


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(settings, "leave_on_disconnect", False)
    sessions.clear()
    with TestClient(app) as c:
        yield c
    sessions.clear()


def _create(client, identity="alice", name="Alice", room_name="Fog Hollow"):
    res = client.post(
        f"/api/rooms?clientId={identity}",
        json={"display_name": name, "room_name": room_name},
    )
    assert res.status_code == 201, res.text
    return res.json()


def _join(client, room_id, identity, name):
    res = client.post(f"/api/rooms/{room_id}/join?clientId={identity}", json={"display_name": name})
    assert res.status_code == 200, res.text
    return res.json()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_role_catalog(client):
    body = client.get("/api/roles").json()
    names = {r["name"] for r in body["roles"]}
    assert {"Werewolf", "Villager", "Seer"} <= names
    assert "Townfolks" in {g["name"] for g in body["gem_categories"]}


def test_create_and_join(client):
    created = _create(client)
    room_id = created["room_id"]
    assert created["room"]["name"] == "Fog Hollow"
    assert created["me"]["is_host"] is True

    joined = _join(client, room_id.lower(), "bob", "Bob")
    assert [p["display_name"] for p in joined["room"]["players"]] == ["Alice", "Bob"]
    assert joined["me"]["is_host"] is False
    assert joined["revision"] == 1


def test_client_identity_is_required(client):
    res = client.post("/api/rooms", json={"display_name": "Alice"})
    assert res.status_code == 422


def test_join_missing_room_is_404(client):
    res = client.post("/api/rooms/NOPE00/join?clientId=bob", json={"display_name": "Bob"})
    assert res.status_code == 404
    assert res.json()["detail"]["code"] == "not_found"


def test_stranger_cannot_read_room(client):
    room_id = _create(client)["room_id"]
    res = client.get(f"/api/rooms/{room_id}?clientId=mallory")
    assert res.status_code == 404


def test_session_is_resumed_after_restart(client):
    room_id = _create(client)["room_id"]
    _join(client, room_id, "bob", "Bob")
    sessions.clear()

    res = client.get(f"/api/rooms/{room_id}?clientId=bob")
    assert res.status_code == 200
    assert res.json()["me"]["display_name"] == "Bob"


def test_host_only_and_conflict_statuses(client):
    room_id = _create(client)["room_id"]
    bob = _join(client, room_id, "bob", "Bob")
    _join(client, room_id, "carol", "Carol")

    res = client.post(f"/api/rooms/{room_id}/deal?clientId=bob", json={})
    assert res.status_code == 403

    res = client.post(f"/api/rooms/{room_id}/deal?clientId=alice", json={})
    assert res.status_code == 409
    detail = res.json()["detail"]
    assert detail["code"] == "insufficient_roles"
    assert detail["needed"] == 3
    assert detail["available"] == 2

    me = client.get(f"/api/rooms/{room_id}?clientId=alice").json()["me"]
    res = client.post(f"/api/rooms/{room_id}/kick?clientId=alice",
                      json={"target_display_id": me["display_id"]})
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "cannot_kick_self"

    res = client.post(f"/api/rooms/{room_id}/kick?clientId=bob",
                      json={"target_display_id": me["display_id"]})
    assert res.status_code == 403

    res = client.post(f"/api/rooms/{room_id}/roles/Nobody/toggle?clientId=bob")
    assert res.status_code == 409
    assert res.json()["detail"]["code"] == "role_locked"

    assert client.post(f"/api/rooms/{room_id}/categories/Specials?clientId=bob").status_code == 200
    res = client.post(f"/api/rooms/{room_id}/categories/Specials?clientId=carol")
    assert res.status_code == 409
    assert bob["me"]["is_host"] is False


def test_count_delta_is_bounded(client):
    room_id = _create(client)["room_id"]
    res = client.post(f"/api/rooms/{room_id}/roles/Seer/count?clientId=alice", json={"delta": 2})
    assert res.status_code == 422
    res = client.post(f"/api/rooms/{room_id}/roles/Seer/count?clientId=alice", json={"delta": -1})
    assert res.status_code == 200
    assert res.json()["count"] == 0


def test_full_round(client):
    room_id = _create(client)["room_id"]
    _join(client, room_id, "bob", "Bob")
    _join(client, room_id, "carol", "Carol")
    for _ in range(2):
        res = client.post(f"/api/rooms/{room_id}/roles/Villager/count?clientId=carol", json={"delta": 1})
        assert res.status_code == 200

    res = client.post(f"/api/rooms/{room_id}/deal?clientId=alice", json={})
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["center_pool_size"] == 1
    assert len(body["me"]["assigned_roles"]) == 1
    assert body["room"]["game_state"] == "night"

    view = client.get(f"/api/rooms/{room_id}?clientId=bob").json()
    assert len(view["me"]["assigned_roles"]) == 1
    assert all(p["has_roles"] for p in view["room"]["players"])

    res = client.post(f"/api/rooms/{room_id}/deal?clientId=alice", json={})
    assert res.status_code == 409
    res = client.post(f"/api/rooms/{room_id}/deal?clientId=alice", json={"redeal": True})
    assert res.status_code == 200

    res = client.post(f"/api/rooms/{room_id}/reset?clientId=alice")
    assert res.json()["room"]["game_state"] == "lobby"

    res = client.post(f"/api/rooms/{room_id}/leave?clientId=alice")
    assert res.status_code == 200
    view = client.get(f"/api/rooms/{room_id}?clientId=bob").json()
    assert view["me"]["is_host"] is True
    assert len(view["room"]["players"]) == 2


def test_last_leave_deletes_room(client):
    room_id = _create(client)["room_id"]
    res = client.post(f"/api/rooms/{room_id}/leave?clientId=alice")
    assert res.json()["room_deleted"] is True
    assert client.get(f"/api/rooms/{room_id}?clientId=alice").status_code == 404


def test_gem_mode_over_http(client):
    room_id = _create(client)["room_id"]
    res = client.put(f"/api/rooms/{room_id}/deal-mode?clientId=alice", json={"mode": "gems"})
    assert res.json()["deal_mode"] == "gems"
    client.post(f"/api/rooms/{room_id}/categories/Werewolfs?clientId=alice")
    res = client.post(f"/api/rooms/{room_id}/categories/Werewolfs/count?clientId=alice", json={"delta": 1})
    assert res.json()["count"] == 1
    res = client.post(f"/api/rooms/{room_id}/deal?clientId=alice", json={})
    assert res.status_code == 200
    assert res.json()["me"]["assigned_roles"][0]["gem"] == "Werewolfs"
    res = client.delete(f"/api/rooms/{room_id}/categories/Werewolfs?clientId=alice")
    assert res.status_code == 200


def test_websocket_snapshot_and_kick(client):
    room_id = _create(client)["room_id"]
    bob = _join(client, room_id, "bob", "Bob")

    with client.websocket_connect(f"/ws/{room_id}?clientId=bob") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "room_updated"
        assert snapshot["me"]["display_name"] == "Bob"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_text("not json")
        assert ws.receive_json()["code"] == "PARSE_ERROR"

        client.post(f"/api/rooms/{room_id}/kick?clientId=alice",
                    json={"target_display_id": bob["me"]["display_id"]})
        assert ws.receive_json()["type"] == "kicked"


def test_websocket_rejects_non_member(client):
    room_id = _create(client)["room_id"]
    with pytest.raises(WebSocketDisconnect) as info:
        with client.websocket_connect(f"/ws/{room_id}?clientId=mallory") as ws:
            ws.receive_json()
    assert info.value.code == 4404


def test_websocket_hears_its_own_leave(client):
    room_id = _create(client)["room_id"]
    _join(client, room_id, "bob", "Bob")

    with client.websocket_connect(f"/ws/{room_id}?clientId=bob") as ws:
        assert ws.receive_json()["type"] == "room_updated"
        res = client.post(f"/api/rooms/{room_id}/leave?clientId=bob")
        assert res.status_code == 200
        assert ws.receive_json() == {"type": "left", "message": "You left the room."}


class _StubSocket:
    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)

    async def close(self, code=1000, reason=None):
        pass


async def test_connection_manager_tracks_presence(store, presence):
    manager = ConnectionManager()
    ws = _StubSocket()
    await manager.connect("bob", ws)
    assert presence.is_connected("bob")

    manager.disconnect("bob", _StubSocket())
    assert presence.is_connected("bob")
    manager.disconnect("bob", ws)
    assert not presence.is_connected("bob")
    assert presence.last_seen("bob") is not None
