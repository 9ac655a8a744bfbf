from __future__ import annotations

from pydantic import BaseModel, Field


class StatusOut(BaseModel):
    supervisor_state: str
    subscriptions: int
    events_received: int
    reconciles_ok: int
    reconciles_failed: int
    writes: int
    tracked_services: int
    last_error: str | None = None
    firewall: str | None = Field(None, description="resource_group/firewall_name being managed")


class ServiceResultOut(BaseModel):
    service: str = Field(..., description="namespace/name")
    change: str
    ok: bool
    wrote: bool
    rules: list[str] = Field(default_factory=list)
    reason: str | None = None
    finished_at: str


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    service: str | None = None
    change: str | None = None
    message: str


class ResyncRequestOut(BaseModel):
    requested: bool
    supervisor_state: str
