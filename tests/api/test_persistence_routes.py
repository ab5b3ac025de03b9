import os
import time

from fastapi.testclient import TestClient

from chatwal.config import Settings
from chatwal.main import create_app


def _client(tmp_path, **overrides) -> TestClient:
    settings = Settings(data_dir=str(tmp_path), scheduler_enabled=False, **overrides)
    return TestClient(create_app(settings))


def _submit(client, room="room-1", text="hi"):
    r = client.post("/v1/messages", json={"room_id": room, "message": text, "sender_id": "u1"})
    return r.json()["message_id"]


def test_health_turns_503_when_a_log_file_disappears(tmp_path):
    with _client(tmp_path) as client:
        r = client.get("/v1/persistence/health")
        assert r.status_code == 200 and r.json()["status"] == "healthy"

        (tmp_path / "message_acknowledgments.ndjson").unlink()
        r = client.get("/v1/persistence/health")
        assert r.status_code == 503
        assert r.json()["missing_files"] == ["acknowledgments"]


def test_stats_and_files(tmp_path):
    with _client(tmp_path) as client:
        _submit(client)
        stats = client.get("/v1/persistence/stats").json()
        assert stats["total_messages"] == 1
        assert stats["status_counts"] == {"sent": 1}
        assert stats["unacknowledged_messages"] == 1

        files = client.get("/v1/persistence/files").json()
        assert files["messages"]["exists"] is True and files["messages"]["size"] > 0


def test_recovery_gaps_and_failed_acknowledgments(tmp_path):
    with _client(tmp_path, ack_timeout_s=-1) as client:
        client.post("/v1/messages/msg_ghost/ack", json={"status": "delivered"})

        failed = client.get("/v1/persistence/failed-acknowledgments").json()
        assert [a["message_id"] for a in failed["acknowledgments"]] == ["msg_ghost"]

        result = client.post("/v1/persistence/recovery").json()
        assert result["stale_acknowledgments"] == 1 and result["gaps"] == 1

        gaps = client.get("/v1/persistence/gaps").json()
        assert gaps["count"] == 1 and gaps["gaps"][0]["message_id"] == "msg_ghost"
        assert client.get("/v1/persistence/poison").json()["count"] == 0


def test_recovery_route_commits_orphans(tmp_path):
    with _client(tmp_path) as client:
        mid = _submit(client)
        client.delete("/v1/batch/clear")
        result = client.post("/v1/persistence/recovery").json()
        assert result["recovered"] == 1
        status = client.get(f"/v1/messages/{mid}/status").json()
        assert status["status"] == "saved"


def test_logs_limit_and_level(tmp_path):
    with _client(tmp_path) as client:
        _submit(client)
        _submit(client)
        logs = client.get("/v1/persistence/logs", params={"limit": 2}).json()
        assert logs["count"] == 2
        assert all(e["operation"] == "MESSAGE_SAVED" for e in logs["logs"])

        errors = client.get("/v1/persistence/logs", params={"level": "error"}).json()
        assert errors["count"] == 0


def test_cleanup_deletes_aged_files(tmp_path):
    with _client(tmp_path) as client:
        old = tmp_path / "message_persistence.old.log"
        old.write_text("{}\n", encoding="utf-8")
        t = time.time() - 10 * 86400
        os.utime(old, (t, t))

        r = client.post("/v1/persistence/cleanup", json={"days_to_keep": 7})
        assert r.json() == {"status": "ok", "deleted": ["message_persistence.old.log"]}
        assert not old.exists()

        r = client.post("/v1/persistence/cleanup", json={"days_to_keep": -1})
        assert r.status_code == 422
