# chatwal/api/deps.py
from __future__ import annotations
from fastapi import Request

from chatwal.service import DurabilityService


def get_service(request: Request) -> DurabilityService:
    return request.app.state.service
