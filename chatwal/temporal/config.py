# chatwal/temporal/config.py
from __future__ import annotations

from chatwal.config import get_settings

# Same Settings (env vars / .env) as the API process
_settings = get_settings()

# Temporal connection
TEMPORAL_ADDRESS = _settings.temporal_address
TEMPORAL_NAMESPACE = _settings.temporal_namespace
SYNC_TASK_QUEUE = _settings.sync_task_queue

# How activities reach the chatwal admin API
# e.g. http://localhost:8000 or http://chatwal:8000 in docker-compose
APP_BASE_URL = _settings.app_base_url

# Timeouts (seconds) and worker sizing
ACTIVITY_START_TO_CLOSE = _settings.temporal_activity_timeout_s
ACTIVITY_HTTP_TIMEOUT = _settings.temporal_http_timeout_s
ACTIVITY_WORKERS = _settings.temporal_activity_workers
