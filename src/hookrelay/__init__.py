"""HookRelay: event-driven webhook delivery.

Delivers internal domain events to registered HTTP endpoints with
per-endpoint authentication, bounded timeouts and durable retries.

Quick Start:
    from hookrelay.service import WebhookService

    async with WebhookService.create() as hooks:
        await hooks.create_subscription(
            tenant_id="acme",
            name="Orders",
            url="https://example.com/hooks",
            events=["order.created"],
        )
        correlation_ids = await hooks.trigger_event(
            "order.created", {"id": 456}, tenant_id="acme"
        )

Components:
    - EventRouter: fans an event out, one task per subscription
    - Dispatcher: signs, sends and classifies one attempt
    - DeliveryRecorder: append-only attempt log, stats, failed queue
    - RetryScheduler: durable retry jobs with claim-then-execute
    - TestHarness: one-off test deliveries
"""

__version__ = "0.1.0"

# Configuration
from .config import RetryDefaults, Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    ClientError,
    ConfigurationError,
    DeliveryError,
    ExhaustedRetries,
    HookRelayError,
    NetworkError,
    NotFoundError,
    RateLimited,
    ServerError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    DeliveryAttempt,
    RetryJob,
    RetryPolicy,
    TestInvocation,
    WebhookEnvelope,
    WebhookSubscription,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "RetryDefaults",
    "Settings",
    "settings",
    # Exceptions
    "HookRelayError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConfigurationError",
    "AuthenticationError",
    "DeliveryError",
    "NetworkError",
    "ClientError",
    "RateLimited",
    "ServerError",
    "ExhaustedRetries",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "DeliveryAttempt",
    "RetryJob",
    "RetryPolicy",
    "TestInvocation",
    "WebhookEnvelope",
    "WebhookSubscription",
]
