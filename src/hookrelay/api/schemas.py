"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.models import (
    ContentType,
    DeliveryAttempt,
    FailedDelivery,
    HttpMethod,
    RetryJob,
    RetryPolicy,
    SecurityConfig,
    TestInvocation,
    WebhookSubscription,
    masked_security,
)


class HealthResponse(BaseModel):
    """Response body for the health check."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "unhealthy"]
    version: str
    storage_connected: bool


class TriggerEventRequest(BaseModel):
    """Request body for triggering a domain event.

    Attributes:
        event_type: Event type, e.g. "order.created".
        payload: Event data delivered as the envelope ``data``.
    """

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1, description="Event type to trigger")
    payload: dict[str, Any] = Field(default_factory=dict, description="Event data")


class TriggerEventResponse(BaseModel):
    """Correlation IDs of the deliveries started for an event."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    correlation_ids: list[str]
    count: int = Field(ge=0)


class SubscriptionCreateRequest(BaseModel):
    """Request body for registering a subscription.

    Attributes:
        name: Display name.
        url: http(s) endpoint receiving deliveries.
        events: Event types to subscribe to.
        method: HTTP method used for deliveries.
        content_type: Serialization of the envelope.
        headers: Custom headers added to every request.
        security: Authentication config, tagged by ``method``.
        include_metadata: Add subscription metadata to the envelope.
        description: Optional free text.
        retry_policy: Retry behaviour. Server defaults apply when omitted.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    url: str = Field(min_length=1, description="Endpoint URL")
    events: list[str] = Field(min_length=1, description="Subscribed event types")
    method: HttpMethod = Field(default="POST")
    content_type: ContentType = Field(default="application/json")
    headers: dict[str, str] = Field(default_factory=dict)
    security: SecurityConfig | None = Field(default=None)
    include_metadata: bool = Field(default=False)
    description: str = Field(default="", max_length=2000)
    retry_policy: RetryPolicy | None = Field(default=None)


class SubscriptionUpdateRequest(BaseModel):
    """Request body for a partial subscription update. Only set fields change."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    url: str | None = None
    events: list[str] | None = Field(default=None, min_length=1)
    method: HttpMethod | None = None
    content_type: ContentType | None = None
    headers: dict[str, str] | None = None
    security: SecurityConfig | None = None
    include_metadata: bool | None = None
    description: str | None = Field(default=None, max_length=2000)
    active: bool | None = None
    retry_policy: RetryPolicy | None = None


class SubscriptionResponse(BaseModel):
    """A subscription as shown to operators. Secrets are masked."""

    model_config = ConfigDict(extra="forbid")

    id: str
    public_id: str
    tenant_id: str
    name: str
    description: str
    url: str
    method: str
    content_type: str
    events: list[str]
    headers: dict[str, str]
    security: dict[str, Any]
    include_metadata: bool
    active: bool
    retry_policy: RetryPolicy
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> SubscriptionResponse:
        """Build the response, masking security secrets."""
        return cls(
            id=subscription.id,
            public_id=subscription.public_id,
            tenant_id=subscription.tenant_id,
            name=subscription.name,
            description=subscription.description,
            url=str(subscription.url),
            method=subscription.method,
            content_type=subscription.content_type,
            events=subscription.events,
            headers=subscription.headers,
            security=masked_security(subscription.security),
            include_metadata=subscription.include_metadata,
            active=subscription.active,
            retry_policy=subscription.retry_policy,
            created_at=subscription.created_at,
            updated_at=subscription.updated_at,
        )


class SubscriptionListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscriptions: list[SubscriptionResponse]
    count: int = Field(ge=0)


class TestDeliveryRequest(BaseModel):
    """Request body for a test delivery.

    Attributes:
        event_type: Event type to send. Defaults to the first subscribed one.
        sample_data: Payload to send. Defaults to the built-in sample.
    """

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(extra="forbid")

    event_type: str | None = None
    sample_data: dict[str, Any] | None = None


class AttemptListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempts: list[DeliveryAttempt]
    count: int = Field(ge=0)


class JobListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jobs: list[RetryJob]
    count: int = Field(ge=0)


class TestInvocationListResponse(BaseModel):
    __test__ = False  # not a pytest test class

    model_config = ConfigDict(extra="forbid")

    invocations: list[TestInvocation]
    count: int = Field(ge=0)


class FailedDeliveryListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    deliveries: list[FailedDelivery]
    count: int = Field(ge=0)


class RedeliverResponse(BaseModel):
    """The new delivery started for a failed one."""

    model_config = ConfigDict(extra="forbid")

    correlation_id: str
    replay_of: str
