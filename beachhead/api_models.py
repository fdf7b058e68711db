from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PublishedEntry(BaseModel):
    """Value stored under one (domain, scheme) key."""

    id: str = Field(..., description="Domain with non-identifier characters replaced by '_'")
    domain: str
    scheme: str = Field(..., description="http|https")
    port: int = Field(..., ge=1, le=65535)
    host: str | None = Field(None, description="Backend address the proxy should reach")
    container: str | None = None


class TickReportModel(BaseModel):
    started_at: str
    finished_at: str | None = None
    inspection_failed: bool = False
    declarations: int = 0
    records: int = 0
    published: int = 0
    parse_errors: int = 0
    publish_errors: int = 0


class StatusResponse(BaseModel):
    state: str
    started_at: str
    ticks: int
    failed_ticks: int
    published_total: int
    parse_errors_total: int
    publish_errors_total: int
    last_tick: TickReportModel | None = None
    ttl_s: int | None = None
    poll_interval_s: int


class RecordsResponse(BaseModel):
    prefix: str
    entries: dict[str, Any]
