# chatwal/temporal/activities.py
from __future__ import annotations
from typing import Any, Dict

import httpx
from temporalio import activity

from chatwal.temporal.config import ACTIVITY_HTTP_TIMEOUT, APP_BASE_URL
from chatwal.temporal.dtos import WFBatchOut, WFRecoveryOut

# ---------- Activity: batch ----------

@activity.defn
def run_batch() -> WFBatchOut:
    """
    POST /v1/batch/process-now. A 409 means a timer-driven run already holds
    the batch; that is reported, not retried.
    """
    url = f"{APP_BASE_URL}/v1/batch/process-now"
    with httpx.Client(timeout=ACTIVITY_HTTP_TIMEOUT) as client:
        resp = client.post(url)
        if resp.status_code == 409:
            return WFBatchOut(batch_id=None, skipped="running", conflict=True)
        resp.raise_for_status()
        body: Dict[str, Any] = resp.json()

    return WFBatchOut(
        batch_id=body.get("batch_id"),
        skipped=body.get("skipped"),
        processed=int(body.get("processed", 0)),
        duplicates=int(body.get("duplicates", 0)),
        errors=int(body.get("errors", 0)),
    )

# ---------- Activity: recovery ----------

@activity.defn
def run_recovery() -> WFRecoveryOut:
    url = f"{APP_BASE_URL}/v1/persistence/recovery"
    with httpx.Client(timeout=ACTIVITY_HTTP_TIMEOUT) as client:
        resp = client.post(url)
        resp.raise_for_status()
        body: Dict[str, Any] = resp.json()

    return WFRecoveryOut(
        recovered=int(body.get("recovered", 0)),
        failed=int(body.get("failed", 0)),
        poisoned=int(body.get("poisoned", 0)),
        reconciled=int(body.get("reconciled", 0)),
        gaps=int(body.get("gaps", 0)),
    )

# ---------- Activity: health ----------

@activity.defn
def check_health() -> Dict[str, Any]:
    """
    GET /v1/persistence/health. 503 carries a body too, so it is returned
    rather than raised; the workflow decides what unhealthy means.
    """
    url = f"{APP_BASE_URL}/v1/persistence/health"
    with httpx.Client(timeout=ACTIVITY_HTTP_TIMEOUT) as client:
        resp = client.get(url)
        if resp.status_code not in (200, 503):
            resp.raise_for_status()
        body: Dict[str, Any] = resp.json()

    return {
        "status": body.get("status", "unknown"),
        "queued_messages": body.get("queued_messages"),
        "unacknowledged_messages": body.get("unacknowledged_messages"),
        "failed_acknowledgments": body.get("failed_acknowledgments"),
        "reconciliation_gaps": body.get("reconciliation_gaps"),
    }
