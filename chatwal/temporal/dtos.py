# chatwal/temporal/dtos.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Plain dataclasses so the Temporal data converter handles them without help

@dataclass
class WFSyncIn:
    include_recovery: bool = True
    request_id: Optional[str] = None  # used as workflow_id for idempotency

@dataclass
class WFBatchOut:
    batch_id: Optional[str]
    skipped: Optional[str]
    processed: int = 0
    duplicates: int = 0
    errors: int = 0
    conflict: bool = False  # a run was already in progress on the server

@dataclass
class WFRecoveryOut:
    recovered: int = 0
    failed: int = 0
    poisoned: int = 0
    reconciled: int = 0
    gaps: int = 0

@dataclass
class WFSyncOut:
    batch: WFBatchOut
    recovery: Optional[WFRecoveryOut]
    health: Dict[str, Any] = field(default_factory=dict)
