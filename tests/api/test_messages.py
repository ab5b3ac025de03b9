from fastapi.testclient import TestClient

from chatwal.config import Settings
from chatwal.main import create_app


def _client(tmp_path) -> TestClient:
    return TestClient(create_app(Settings(data_dir=str(tmp_path), scheduler_enabled=False)))


def _submit(client, room="room-1", text="hi"):
    r = client.post("/v1/messages", json={"room_id": room, "message": text, "sender_id": "u1"})
    assert r.status_code == 201
    return r.json()["message_id"]


def test_transport_ack_defaults_to_delivered(tmp_path):
    with _client(tmp_path) as client:
        mid = _submit(client)

        ack = client.post(f"/v1/messages/{mid}/ack").json()
        assert ack["message_id"] == mid and ack["status"] == "delivered"
        assert ack["acknowledgment_id"].startswith("ack_")

        ack = client.post(f"/v1/messages/{mid}/ack", json={"status": "read"}).json()
        assert ack["status"] == "read"
        assert client.get(f"/v1/messages/{mid}/status").json()["status"] == "read"
        # receipts do not stand in for the commit
        assert client.get("/v1/persistence/unacknowledged").json()["count"] == 1


def test_status_update_and_listing(tmp_path):
    with _client(tmp_path) as client:
        mid = _submit(client)
        r = client.patch(f"/v1/messages/{mid}/status",
                         json={"status": "read", "additional_data": {"by": "u2"}})
        assert r.status_code == 200
        assert r.json()["extra"] == {"by": "u2"}

        statuses = client.get("/v1/messages/statuses").json()
        assert [s["message_id"] for s in statuses] == [mid]


def test_unknown_message_status_is_404(tmp_path):
    with _client(tmp_path) as client:
        r = client.get("/v1/messages/msg_missing/status")
        assert r.status_code == 404
        assert r.json() == {"error": "NotFound", "detail": "Message status"}
