"""Webhook subscription models.

A subscription registers an external endpoint for one or more event types
within a single tenant. Subscriptions are deactivated, never deleted, so
their delivery history stays resolvable.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator, model_validator

from .base import generate_id, generate_public_id, utc_now
from .security import NoAuth, SecurityConfig, check_header_name, check_header_value

HttpMethod = Literal["POST", "PUT", "PATCH", "DELETE"]

ContentType = Literal[
    "application/json",
    "application/xml",
    "application/x-www-form-urlencoded",
    "text/plain",
]

BackoffStrategy = Literal["fixed", "exponential"]

CONTENT_TYPES: dict[str, str] = {
    "application/json": "JSON",
    "application/xml": "XML",
    "application/x-www-form-urlencoded": "Form URL Encoded",
    "text/plain": "Plain Text",
}

_EVENT_TYPE_RE = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")


class RetryPolicy(BaseModel):
    """Retry and timeout behaviour for one subscription.

    Attributes:
        max_attempts: Total attempts per delivery, including the first.
        base_delay_seconds: Delay before the first retry.
        timeout_seconds: Hard bound on a single HTTP request.
        backoff: "fixed" repeats base_delay; "exponential" doubles it each attempt.
        max_delay_seconds: Ceiling applied to exponential backoff.
    """

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=60.0, gt=0, le=86400)
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    backoff: BackoffStrategy = Field(default="exponential")
    max_delay_seconds: float = Field(default=3600.0, gt=0, le=86400)

    @model_validator(mode="after")
    def _check_ceiling(self) -> RetryPolicy:
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class WebhookSubscription(BaseModel):
    """A registered endpoint interested in one or more event types.

    Attributes:
        id: Internal identifier.
        public_id: Receiver-facing identifier, unique and looked up exactly.
        tenant_id: Owning tenant. Events never cross tenants.
        name: Display name.
        description: Optional free text.
        url: http(s) endpoint receiving deliveries.
        method: HTTP method used for deliveries.
        content_type: Serialization of the envelope.
        events: Subscribed event types (non-empty, no duplicates).
        headers: Custom headers added to every request.
        security: Authentication method and its settings.
        include_metadata: Add subscription metadata to the envelope.
        active: Inactive subscriptions match no events.
        retry_policy: Attempts, backoff and timeout.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    public_id: str = Field(default_factory=generate_public_id)
    tenant_id: str = Field(min_length=1, description="Owning tenant")
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    url: HttpUrl = Field(description="http(s) endpoint receiving deliveries")
    method: HttpMethod = Field(default="POST")
    content_type: ContentType = Field(default="application/json")
    events: list[str] = Field(min_length=1, description="Subscribed event types")
    headers: dict[str, str] = Field(default_factory=dict)
    security: SecurityConfig = Field(default_factory=NoAuth)
    include_metadata: bool = Field(default=False)
    active: bool = Field(default=True)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("events")
    @classmethod
    def _normalize_events(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for event in value:
            event = event.strip()
            if not _EVENT_TYPE_RE.match(event):
                raise ValueError(f"invalid event type: {event!r}")
            if event not in seen:
                seen.append(event)
        return seen

    @field_validator("headers")
    @classmethod
    def _valid_headers(cls, value: dict[str, str]) -> dict[str, str]:
        for name, header_value in value.items():
            check_header_name(name)
            try:
                check_header_value(header_value)
            except ValueError as e:
                raise ValueError(f"invalid custom header {name!r}: {e}") from e
        return value

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this subscription is active and listens for the event."""
        return self.active and event_type in self.events


__all__ = [
    "BackoffStrategy",
    "CONTENT_TYPES",
    "ContentType",
    "HttpMethod",
    "RetryPolicy",
    "WebhookSubscription",
]
