# pylint: disable=missing-module-docstring,missing-function-docstring
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from config import AppConfig
from server.app import build_document_store, create_app


@pytest.fixture
def client() -> Iterator[TestClient]:
    app = create_app(AppConfig(turn_url="turn:relay", turn_username="u", turn_credential="p"), purge_interval_s=0)
    with TestClient(app) as test_client:
        yield test_client


def approve_new_session(client: TestClient) -> dict:
    created = client.post("/registrations", json={
        "title": "Night Talk",
        "topic": "Stars",
        "date": "2020-01-01",
        "time": "20:00",
        "speaker": "Vera",
    })
    assert created.status_code == 201
    approved = client.post(f"/registrations/{created.json()['id']}/approve")
    assert approved.status_code == 200
    return approved.json()


def test_health_and_ice_servers(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}

    servers = client.get("/ice-servers").json()
    assert servers[-1] == {"urls": ["turn:relay"], "username": "u", "credential": "p"}


def test_registration_workflow(client: TestClient) -> None:
    pending = client.post("/registrations", json={
        "title": "Maybe", "topic": "?", "date": "2030-02-02", "time": "09:00",
    }).json()["id"]
    assert [r["id"] for r in client.get("/registrations").json()] == [pending]

    assert client.post(f"/registrations/{pending}/reject").json() == {"id": pending, "status": "rejected"}
    assert client.get("/registrations").json() == []

    session = approve_new_session(client)
    assert session["status"] == "approved"
    assert session["host_name"] == "Vera"
    assert session["joinable"] is True
    assert session["reason"] == "Open"


def test_listing_and_lookup(client: TestClient) -> None:
    session = approve_new_session(client)

    listed = client.get("/podcasts").json()
    assert [s["id"] for s in listed] == [session["id"]]
    assert listed[0]["room_id"].startswith("podcast_")

    assert client.get(f"/podcasts/{session['id']}").json()["room_id"] == listed[0]["room_id"]


def test_unknown_ids_map_to_404(client: TestClient) -> None:
    assert client.get("/podcasts/missing").status_code == 404
    assert client.post("/podcasts/missing/end").status_code == 404

    response = client.post("/registrations/missing/approve")
    assert response.status_code == 404
    assert response.json() == {"detail": "registration not found: missing"}


def test_end_marks_directory_and_room(client: TestClient) -> None:
    session = approve_new_session(client)

    response = client.post(f"/podcasts/{session['id']}/end")

    assert response.json() == {"id": session["id"], "status": "ended"}
    assert client.get(f"/podcasts/{session['id']}").json()["reason"] == "This podcast has ended"
    assert client.get("/podcasts").json() == []

    with client.websocket_connect(f"/ws/signaling/{session['room_id']}") as ws:
        ws.receive_json()
        ws.send_json({"op": "get", "req": 1, "path": "status"})
        assert ws.receive_json() == {"type": "result", "req": 1, "ok": True, "value": "ended"}


def test_websocket_signaling_round_trip(client: TestClient) -> None:
    with client.websocket_connect("/ws/signaling/room1") as listener, \
            client.websocket_connect("/ws/signaling/room1") as host:
        init = listener.receive_json()
        host.receive_json()
        assert init["type"] == "SESSION_INIT"
        assert init["room_id"] == "room1"

        host.send_json({"op": "subscribe", "req": 1, "sub": "offers", "event": "value",
                        "path": "webrtc/listener-a/offer"})
        first = [host.receive_json(), host.receive_json()]
        assert {"type": "result", "req": 1, "ok": True} in first
        assert {"type": "event", "sub": "offers", "event": "value", "value": None} in first

        offer = {"type": "offer", "id": "offer-1", "from": "listener-a", "sdp": "v=0", "timestamp": 1}
        listener.send_json({"op": "set", "req": 1, "path": "webrtc/listener-a/offer", "value": offer})
        assert listener.receive_json() == {"type": "result", "req": 1, "ok": True}

        assert host.receive_json() == {"type": "event", "sub": "offers", "event": "value", "value": offer}


def test_unknown_directory_backend() -> None:
    with pytest.raises(ValueError):
        build_document_store(AppConfig(directory_backend="sqlite"))
