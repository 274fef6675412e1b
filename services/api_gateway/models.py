"""
Response models for the monitoring API.

The engine hands out frozen snapshot dataclasses; these models pin the JSON
shape the routes return so the OpenAPI docs describe what a reporter gets.
Bucket payloads vary by field kind, so they stay loosely typed.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class StateResponse(BaseModel):
    """Full engine snapshot."""

    process_start: int = Field(..., description="Engine start, epoch milliseconds")
    fields: Dict[str, Dict[str, Any]] = Field(
        ...,
        description="Per field: config, data (buckets), last window start, created_at",
    )


class UptimeResponse(BaseModel):
    uptime: int = Field(..., description="Milliseconds since the engine started")


class CountersResponse(BaseModel):
    counters: List[str]


class CounterDataResponse(BaseModel):
    """Retained buckets of one counter, oldest first."""

    data: List[Dict[str, Any]]


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    """Liveness probe for the monitoring API itself."""

    status: str
    uptime_ms: int
    fields: int
    retention_scheduled: bool
