"""Retry job model.

A RetryJob is the durable promise to make one more attempt for a delivery.
Status only moves forward: pending -> in_progress -> done | cancelled.
Workers take ownership through a conditional claim in storage; the claim
fields record who holds the job and until when.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

JobStatus = Literal["pending", "in_progress", "done", "cancelled"]

# What happened when a claimed job ran
JobOutcome = Literal["success", "rescheduled", "failed"]

# Allowed forward transitions
JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"done"}),
    "done": frozenset(),
    "cancelled": frozenset(),
}


class RetryJob(BaseModel):
    """A scheduled retry of one delivery.

    Attributes:
        id: Unique identifier for this job.
        correlation_id: Delivery this job belongs to.
        subscription_id: Target subscription.
        tenant_id: Owning tenant.
        event_type: Event type being delivered.
        attempt_number: Attempt number this job will perform.
        payload: Original event data (the envelope ``data``).
        scheduled_at: Earliest time the job may run.
        status: pending, in_progress, done or cancelled.
        claimed_by: Worker identity holding the claim.
        claim_token: Random token written by the successful claimer.
        claimed_at: When the claim was taken.
        lease_expires_at: After this, another worker may take over.
        outcome: Result once done.
        completed_at: When the job reached done or cancelled.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("job"))
    correlation_id: str
    subscription_id: str
    tenant_id: str
    event_type: str
    attempt_number: int = Field(ge=2)
    payload: dict[str, Any] = Field(default_factory=dict)
    replay_of: str | None = None
    scheduled_at: datetime
    status: JobStatus = "pending"
    claimed_by: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None
    lease_expires_at: datetime | None = None
    outcome: JobOutcome | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def can_transition(self, new_status: JobStatus) -> bool:
        """Whether moving to new_status keeps the one-way progression."""
        return new_status in JOB_TRANSITIONS[self.status]

    def is_due(self, now: datetime) -> bool:
        """Whether a worker may claim this job at ``now``."""
        if self.status == "pending":
            return self.scheduled_at <= now
        if self.status == "in_progress":
            return self.lease_expires_at is not None and self.lease_expires_at < now
        return False


__all__ = ["JOB_TRANSITIONS", "JobOutcome", "JobStatus", "RetryJob"]
