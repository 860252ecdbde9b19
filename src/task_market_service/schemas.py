"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class PriceSweepResponse(BaseModel):
    """Response model for POST /internal/sweeps/price-adjustment."""

    model_config = ConfigDict(extra="forbid")
    flagged_count: int
    task_ids: list[str]
