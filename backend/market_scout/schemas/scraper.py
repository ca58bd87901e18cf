from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class QuotaOut(BaseModel):
    remaining: int
    reset_at: datetime | None = None
    total: int | None = None
    used: int | None = None
    has_capacity: bool


class ProxyDetailsOut(BaseModel):
    host: str
    port: int
    zone_name: str
    username: str
    password_configured: bool


class PresetTestRequest(BaseModel):
    url: str


class PresetTestResponse(BaseModel):
    message: str
    data: dict[str, Any]


class ProcessPendingResponse(BaseModel):
    dispatched: int
    job_ids: list[str]
