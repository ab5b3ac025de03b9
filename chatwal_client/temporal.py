# chatwal_client/temporal.py
from __future__ import annotations
from .client import ChatWalClient
from . import models as M

class TemporalClient:
    def __init__(self, core: ChatWalClient):
        self.core = core

    def start_sync(self, *, include_recovery: bool = True, request_id: str | None = None,
                   wait: bool = True) -> dict | M.TemporalStartOut:
        payload = {"include_recovery": include_recovery, "request_id": request_id}
        r = self.core._request(
            "POST",
            f"/v1/sync/temporal?wait={'true' if wait else 'false'}",
            json=payload,
        )
        data = r.json()
        # wait=true returns the workflow result; else workflow ids
        return data if wait else M.TemporalStartOut(**data)

    def status(self, workflow_id: str) -> M.TemporalStatusOut:
        r = self.core._request("GET", f"/v1/temporal/{workflow_id}/status")
        return M.TemporalStatusOut(**r.json())
