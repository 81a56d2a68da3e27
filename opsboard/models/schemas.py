from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from opsboard.ops.aggregator import DependencyStatus, SelfFacts
from opsboard.ops.probe import CheckResult


class LivenessResponse(BaseModel):
    ok: bool = True
    service: str
    uptime_seconds: int
    timestamp: datetime


class ReadinessResponse(BaseModel):
    ok: bool
    db: Literal["ok", "down"]
    latency_ms: float | None = None
    error: str | None = None
    timestamp: datetime


class OpsStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    range: str | None = None
    self_facts: SelfFacts = Field(alias="self")
    dependency: DependencyStatus
    services: list[CheckResult]
