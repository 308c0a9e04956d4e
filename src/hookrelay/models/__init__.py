"""Data models for HookRelay.

Subscriptions:
    - WebhookSubscription: Registered endpoint, event set, auth, retry policy
    - RetryPolicy: Attempts, backoff and timeout per subscription
    - SecurityConfig: Discriminated union of authentication methods

Deliveries:
    - WebhookEnvelope: Body sent to receivers
    - DeliveryOutcome: Result of one attempt before it is recorded
    - DeliveryAttempt: Append-only production attempt record
    - TestInvocation: Test-harness attempt record
    - RetryJob: Scheduled follow-up attempt

Read models:
    - DeliveryStats, FailedDelivery
"""

from .base import generate_id, generate_public_id, utc_now
from .delivery import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryOutcome,
    TestInvocation,
    WebhookEnvelope,
)
from .events import EVENT_TYPES, SAMPLE_EVENT_DATA, sample_data_for
from .retry import JOB_TRANSITIONS, JobOutcome, JobStatus, RetryJob
from .security import (
    ApiKey,
    BasicAuth,
    BearerToken,
    HmacSha256,
    NoAuth,
    SecurityConfig,
    SecurityMethod,
    WebhookSecret,
    masked_security,
)
from .stats import DeliveryStats, FailedDelivery
from .subscription import (
    CONTENT_TYPES,
    BackoffStrategy,
    ContentType,
    HttpMethod,
    RetryPolicy,
    WebhookSubscription,
)

__all__ = [
    # Helpers
    "generate_id",
    "generate_public_id",
    "utc_now",
    # Subscriptions
    "BackoffStrategy",
    "CONTENT_TYPES",
    "ContentType",
    "HttpMethod",
    "RetryPolicy",
    "WebhookSubscription",
    # Security
    "ApiKey",
    "BasicAuth",
    "BearerToken",
    "HmacSha256",
    "NoAuth",
    "SecurityConfig",
    "SecurityMethod",
    "WebhookSecret",
    "masked_security",
    # Deliveries
    "AttemptStatus",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "TestInvocation",
    "WebhookEnvelope",
    "JOB_TRANSITIONS",
    "JobOutcome",
    "JobStatus",
    "RetryJob",
    # Read models
    "DeliveryStats",
    "FailedDelivery",
    # Event catalog
    "EVENT_TYPES",
    "SAMPLE_EVENT_DATA",
    "sample_data_for",
]
