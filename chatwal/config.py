from __future__ import annotations
from pathlib import Path
from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PrimaryBackend = Literal["memory", "http"]

class Settings(BaseSettings):
    # --- Files ---
    data_dir: str = "./data"
    messages_file: str = "messages_queue.ndjson"
    acks_file: str = "message_acknowledgments.ndjson"
    oplog_file: str = "message_persistence.log"
    poison_file: str = "message_poison.ndjson"
    queue_snapshot_file: str = "messages_queue.json"

    # --- Batch committer ---
    batch_interval_s: float = 15 * 60
    max_batch_size: int = 1000
    batch_run_timeout_s: float = 120.0
    shutdown_timeout_s: float = 30.0

    # --- Recovery loop ---
    recovery_interval_s: float = 60.0
    ack_timeout_s: float = 30.0
    max_retries: int = 5

    # --- Log writer ---
    lock_timeout_s: float = 5.0
    retention_days: int = 30

    # --- Primary store ---
    primary_store: PrimaryBackend = Field(default="memory")   # memory | http
    primary_url: str = "http://localhost:3000"
    primary_api_secret: Optional[str] = None
    primary_timeout_s: float = 10.0

    # --- Timers (tests switch them off) ---
    scheduler_enabled: bool = True

    # --- Temporal ---
    temporal_address: str = "localhost:7233"
    temporal_namespace: str = "default"
    sync_task_queue: str = "chatwal-sync-tq"
    app_base_url: str = "http://localhost:8000"
    temporal_activity_timeout_s: float = 180.0
    temporal_http_timeout_s: float = 150.0
    temporal_activity_workers: int = 4

    # --- Logging ---
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("primary_store", mode="before")
    @classmethod
    def _validate_backend(cls, v: str) -> str:
        v = str(v).lower()
        if v not in ("memory", "http"):
            raise ValueError("PRIMARY_STORE must be 'memory' or 'http'")
        return v

    @field_validator("max_retries", "max_batch_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    # -------- derived paths
    @property
    def root(self) -> Path:
        return Path(self.data_dir)

    @property
    def messages_path(self) -> Path: return self.root / self.messages_file
    @property
    def acks_path(self) -> Path: return self.root / self.acks_file
    @property
    def oplog_path(self) -> Path: return self.root / self.oplog_file
    @property
    def poison_path(self) -> Path: return self.root / self.poison_file
    @property
    def queue_snapshot_path(self) -> Path: return self.root / self.queue_snapshot_file


def get_settings() -> Settings:
    return Settings()
