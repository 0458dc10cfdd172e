"""Liveness and readiness check payloads."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class HealthStatusResponse(SQLModel):
    ok: bool = Field(description="True while the process is serving requests.", examples=[True])


class ReadinessResponse(HealthStatusResponse):
    """Readiness adds the database round-trip result."""

    database: bool = Field(description="True when `SELECT 1` succeeded.", examples=[True])
    environment: str = Field(examples=["dev"])
