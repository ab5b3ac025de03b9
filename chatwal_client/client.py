# chatwal_client/client.py
from __future__ import annotations
from typing import Any
import time
import httpx

from .config import ClientConfig
from .exceptions import (
    NotFound, Conflict, BadRequest, TransportError, ServerError
)
from . import models as M


class ChatWalClient:
    def __init__(self, config: ClientConfig, transport: httpx.BaseTransport | None = None):
        self.cfg = config
        headers = {"X-API-SECRET": config.api_secret} if config.api_secret else None
        self._client = httpx.Client(
            base_url=config.base_url, timeout=config.timeout_s, headers=headers, transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ChatWalClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------ low-level helpers ------------
    def _request(self, method: str, url: str, json: Any | None = None,
                 params: dict[str, Any] | None = None) -> httpx.Response:
        tries = max(1, self.cfg.retries + 1)
        last_exc: Exception | None = None
        for attempt in range(tries):
            try:
                resp = self._client.request(method, url, json=json, params=params)
                if resp.status_code >= 500:
                    raise ServerError(f"HTTP {resp.status_code}: {resp.text}")
                if resp.status_code == 404:
                    raise NotFound(resp.text)
                if resp.status_code == 409:
                    raise Conflict(resp.text)
                if resp.status_code in (400, 422):
                    raise BadRequest(resp.text)
                resp.raise_for_status()
                return resp
            except (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
                last_exc = e
                if attempt < tries - 1:
                    time.sleep(0.25 * (2 ** attempt))
                    continue
                raise TransportError(str(e)) from e
            except ServerError as e:
                last_exc = e
                if attempt < tries - 1:
                    time.sleep(0.5 * (2 ** attempt))
                    continue
                raise
        raise TransportError(f"request failed: {last_exc}")

    # ------------ Messages ------------
    def submit_message(self, msg: M.SubmitMessageIn) -> M.SubmitOut:
        r = self._request("POST", "/v1/messages", json=msg.model_dump(mode="json", exclude_none=True))
        return M.SubmitOut(**r.json())

    def acknowledge(self, message_id: str, status: str = "delivered") -> M.Acknowledgment:
        r = self._request("POST", f"/v1/messages/{message_id}/ack", json={"status": status})
        return M.Acknowledgment(**r.json())

    def get_status(self, message_id: str) -> M.MessageStatusOut:
        r = self._request("GET", f"/v1/messages/{message_id}/status")
        return M.MessageStatusOut(**r.json())

    def update_status(self, message_id: str, status: str,
                      additional_data: dict[str, Any] | None = None) -> M.MessageStatusOut:
        body = {"status": status, "additional_data": additional_data}
        r = self._request("PATCH", f"/v1/messages/{message_id}/status", json=body)
        return M.MessageStatusOut(**r.json())

    def list_statuses(self) -> list[M.MessageStatusOut]:
        r = self._request("GET", "/v1/messages/statuses")
        return [M.MessageStatusOut(**x) for x in r.json()]

    # ------------ Batch ------------
    def batch_stats(self) -> M.BatchStats:
        r = self._request("GET", "/v1/batch/stats")
        return M.BatchStats(**r.json())

    def room_messages(self, room_id: str) -> list[dict[str, Any]]:
        r = self._request("GET", f"/v1/batch/rooms/{room_id}")
        return r.json()["messages"]

    def process_now(self) -> M.BatchResult:
        r = self._request("POST", "/v1/batch/process-now")
        return M.BatchResult(**r.json())

    def clear_queue(self) -> int:
        r = self._request("DELETE", "/v1/batch/clear")
        return r.json()["cleared"]

    def queue_file(self) -> dict[str, Any]:
        return self._request("GET", "/v1/batch/queue-file").json()

    # ------------ Persistence ------------
    def health(self) -> M.HealthOut:
        # 503 still carries the health report; no retry, no exception
        try:
            resp = self._client.get("/v1/persistence/health")
        except httpx.TransportError as e:
            raise TransportError(str(e)) from e
        if resp.status_code not in (200, 503):
            raise ServerError(f"HTTP {resp.status_code}: {resp.text}")
        return M.HealthOut(**resp.json())

    def persistence_stats(self) -> dict[str, Any]:
        return self._request("GET", "/v1/persistence/stats").json()

    def unacknowledged(self) -> list[dict[str, Any]]:
        return self._request("GET", "/v1/persistence/unacknowledged").json()["messages"]

    def failed_acknowledgments(self) -> list[M.Acknowledgment]:
        r = self._request("GET", "/v1/persistence/failed-acknowledgments")
        return [M.Acknowledgment(**x) for x in r.json()["acknowledgments"]]

    def gaps(self) -> list[dict[str, Any]]:
        return self._request("GET", "/v1/persistence/gaps").json()["gaps"]

    def poisoned(self) -> list[dict[str, Any]]:
        return self._request("GET", "/v1/persistence/poison").json()["messages"]

    def run_recovery(self) -> M.RecoveryResult:
        r = self._request("POST", "/v1/persistence/recovery")
        return M.RecoveryResult(**r.json())

    def files(self) -> dict[str, Any]:
        return self._request("GET", "/v1/persistence/files").json()

    def cleanup(self, days_to_keep: int = 30) -> list[str]:
        r = self._request("POST", "/v1/persistence/cleanup", json={"days_to_keep": days_to_keep})
        return r.json()["deleted"]

    def logs(self, limit: int = 100, level: str | None = None) -> list[M.OperationEntry]:
        params: dict[str, Any] = {"limit": limit}
        if level:
            params["level"] = level
        r = self._request("GET", "/v1/persistence/logs", params=params)
        return [M.OperationEntry(**x) for x in r.json()["logs"]]
