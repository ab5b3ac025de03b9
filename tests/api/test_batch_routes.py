from fastapi.testclient import TestClient

from chatwal.config import Settings
from chatwal.main import create_app


def _client(tmp_path) -> TestClient:
    return TestClient(create_app(Settings(data_dir=str(tmp_path), scheduler_enabled=False)))


def _submit(client, room, text, ts=None):
    body = {"room_id": room, "message": text, "sender_id": "u1"}
    if ts:
        body["timestamp"] = ts
    return client.post("/v1/messages", json=body).json()["message_id"]


def test_stats_rooms_and_queue_file(tmp_path):
    with _client(tmp_path) as client:
        late = _submit(client, "room-a", "late", "2024-05-02T00:00:00Z")
        early = _submit(client, "room-a", "early", "2024-05-01T00:00:00Z")
        _submit(client, "room-b", "other")

        stats = client.get("/v1/batch/stats").json()
        assert stats["total_messages"] == 3 and stats["is_processing"] is False

        room = client.get("/v1/batch/rooms/room-a").json()
        assert room["count"] == 2
        assert [m["message_id"] for m in room["messages"]] == [early, late]

        health = client.get("/v1/batch/health").json()
        assert health["status"] == "healthy" and health["file_exists"] is True

        queue_file = client.get("/v1/batch/queue-file").json()
        assert queue_file["version"] == "1.0"


def test_process_now_conflicts_while_running(tmp_path):
    with _client(tmp_path) as client:
        _submit(client, "room-a", "x")
        svc = client.app.state.service
        svc.batch.is_running = True
        r = client.post("/v1/batch/process-now")
        assert r.status_code == 409
        assert r.json()["detail"] == "Batch processing already in progress"
        svc.batch.is_running = False

        result = client.post("/v1/batch/process-now").json()
        assert result["processed"] == 1
        empty = client.post("/v1/batch/process-now").json()
        assert empty["skipped"] == "empty"


def test_clear_drops_memory_queue_only(tmp_path):
    with _client(tmp_path) as client:
        _submit(client, "room-a", "x")
        _submit(client, "room-a", "y")
        assert client.delete("/v1/batch/clear").json() == {"status": "ok", "cleared": 2}
        assert client.get("/v1/batch/stats").json()["total_messages"] == 0
        assert client.get("/v1/persistence/unacknowledged").json()["count"] == 2


def test_missing_queue_file_is_404(tmp_path):
    with _client(tmp_path) as client:
        (tmp_path / "messages_queue.json").unlink()
        assert client.get("/v1/batch/queue-file").status_code == 404
