"""Pydantic schemas for the security monitoring API."""

from typing import Any

from pydantic import BaseModel


class SecurityEventResponse(BaseModel):
    type: str
    ip: str
    user_agent: str
    details: dict[str, Any]
    severity: str
    timestamp: str


class SecurityEventListResponse(BaseModel):
    events: list[SecurityEventResponse]
    total: int


class ThreatCount(BaseModel):
    type: str
    count: int


class SecurityStatsResponse(BaseModel):
    total_events: int
    events_by_severity: dict[str, int]
    top_threats: list[ThreatCount]
    blocked_ips: int
