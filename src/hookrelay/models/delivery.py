"""Delivery models: the envelope, attempt outcomes and their records.

DeliveryAttempt and TestInvocation share the same outcome fields but are
stored separately, so test traffic never shows up in production statistics.
Both are frozen: once written, a record is never changed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

# Delivery status of a single attempt
AttemptStatus = Literal["success", "failed", "retrying"]


class WebhookEnvelope(BaseModel):
    """Body sent to the receiver, before content-type serialization.

    Attributes:
        subscription_public_id: Receiver-facing subscription identifier.
        event_type: Event type, e.g. "order.created".
        timestamp: When the envelope was built (ISO 8601, UTC).
        tenant_id: Tenant the event belongs to.
        data: Event payload as supplied by the triggering code.
        metadata: Subscription metadata, present only when enabled.
    """

    model_config = ConfigDict(extra="forbid")

    subscription_public_id: str
    event_type: str
    timestamp: datetime = Field(default_factory=utc_now)
    tenant_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None

    def to_body(self) -> dict[str, Any]:
        """JSON-compatible dict, omitting metadata when absent."""
        return self.model_dump(mode="json", exclude_none=True)


class _OutcomeFields(BaseModel):
    """Fields describing what happened on one HTTP attempt."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    subscription_id: str
    tenant_id: str
    event_type: str
    payload: dict[str, Any] = Field(description="Envelope snapshot as sent")
    status: AttemptStatus
    retryable: bool = False
    error_code: str | None = Field(default=None, description="Exception code, if failed")
    error: str | None = None
    response_code: int | None = None
    response_body: str | None = None
    latency_ms: int = Field(default=0, ge=0)
    retry_after_seconds: int | None = Field(default=None, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class DeliveryOutcome(_OutcomeFields):
    """Result of one dispatcher attempt, before it is recorded.

    Attributes:
        correlation_id: Links all attempts for one event occurrence.
        attempt_number: 1 for the initial attempt, then 2, 3, ...
    """

    correlation_id: str
    attempt_number: int = Field(ge=1)
    replay_of: str | None = None

    def to_attempt(self) -> DeliveryAttempt:
        """Build the append-only record for this outcome."""
        return DeliveryAttempt(**self.model_dump())

    def to_test_invocation(self) -> TestInvocation:
        """Build a test-harness record for this outcome."""
        data = self.model_dump(exclude={"correlation_id", "attempt_number", "replay_of"})
        return TestInvocation(**data)


class DeliveryAttempt(DeliveryOutcome):
    """Record of a production delivery attempt. Append-only.

    Attributes:
        id: Unique identifier for this attempt.
        replay_of: Correlation ID of the failed delivery this one re-triggers.
    """

    id: str = Field(default_factory=lambda: generate_id("att"))


class TestInvocation(_OutcomeFields):
    """Record of a manual test delivery. Never retried, never counted."""

    __test__ = False  # not a pytest test class

    id: str = Field(default_factory=lambda: generate_id("tst"))


__all__ = [
    "AttemptStatus",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "TestInvocation",
    "WebhookEnvelope",
]
