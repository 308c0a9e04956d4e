"""Read-side aggregates over delivery attempts.

Nothing here is stored. Every figure is computed from the attempt log when
it is asked for, so counters cannot drift from the rows they describe.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeliveryStats(BaseModel):
    """Attempt statistics for a tenant or a single subscription."""

    model_config = ConfigDict(extra="forbid")

    total: int = Field(default=0, ge=0)
    successful: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    retrying: int = Field(default=0, ge=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=100.0, description="Percent, 2 dp")
    avg_latency_ms: float | None = None
    min_latency_ms: int | None = None
    max_latency_ms: int | None = None
    last_delivery_at: datetime | None = None


class FailedDelivery(BaseModel):
    """One terminally failed delivery, as shown in the operator queue."""

    model_config = ConfigDict(extra="forbid")

    correlation_id: str
    subscription_id: str
    tenant_id: str
    event_type: str
    attempts: int = Field(ge=1)
    last_error_code: str | None = None
    last_error: str | None = None
    last_response_code: int | None = None
    last_attempt_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


__all__ = ["DeliveryStats", "FailedDelivery"]
