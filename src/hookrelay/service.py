"""HookRelay service layer.

This module provides the WebhookService that wires storage, the dispatcher,
the recorder, the retry scheduler, the event router and the test harness
behind one interface.

Example:
    ```python
    from hookrelay.service import WebhookService

    async with WebhookService.create() as hooks:
        subscription = await hooks.create_subscription(
            tenant_id="acme",
            name="Orders",
            url="https://example.com/hooks/orders",
            events=["order.created"],
            security={"method": "hmac_sha256", "secret": "s3cret"},
        )
        correlation_ids = await hooks.trigger_event(
            "order.created", {"id": 456}, tenant_id="acme"
        )
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from hookrelay.config import Settings
from hookrelay.dispatcher import Dispatcher
from hookrelay.events import EventRouter
from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.harness import TestHarness
from hookrelay.models import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryStats,
    FailedDelivery,
    JobStatus,
    RetryJob,
    RetryPolicy,
    TestInvocation,
    WebhookSubscription,
)
from hookrelay.recorder import DeliveryRecorder
from hookrelay.scheduler import RetryScheduler
from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "public_id", "tenant_id", "created_at", "updated_at"})


def _as_validation_error(error: PydanticValidationError) -> ValidationError:
    """Collapse a pydantic error into the first failing field."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "subscription"
    return ValidationError(location, first.get("msg", "invalid value"))


@dataclass
class WebhookService:
    """High-level webhook service.

    This service provides a simple interface for:
    - Subscription admin: create, update, deactivate, get, list
    - trigger_event(): fan an event out to matching subscriptions
    - test_delivery(): one recorded, never-retried test request
    - redeliver(): re-trigger a failed delivery as a new one
    - Read views: attempts, history, stats, failed deliveries, jobs

    Attributes:
        storage: Storage backend (Qdrant).
        settings: Configuration settings.
        transport: Optional httpx transport for outbound requests.
    """

    storage: WebhookStorage
    settings: Settings
    transport: httpx.AsyncBaseTransport | None = None

    recorder: DeliveryRecorder = field(init=False, repr=False)
    dispatcher: Dispatcher = field(init=False, repr=False)
    scheduler: RetryScheduler = field(init=False, repr=False)
    router: EventRouter = field(init=False, repr=False)
    harness: TestHarness = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Wire components after dataclass construction."""
        self.recorder = DeliveryRecorder(self.storage)
        self.dispatcher = Dispatcher(self.recorder, self.settings, transport=self.transport)
        self.scheduler = RetryScheduler(self.storage, self.dispatcher, self.settings)
        self.router = EventRouter(self.storage, self.dispatcher, self.scheduler)
        self.harness = TestHarness(self.storage, self.dispatcher, self.recorder)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> WebhookService:
        """Create a WebhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests.

        Returns:
            Configured WebhookService instance.
        """
        if settings is None:
            settings = Settings()

        return cls(
            storage=WebhookStorage(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                prefix=settings.collection_prefix,
                location=settings.qdrant_location,
            ),
            settings=settings,
            transport=transport,
        )

    async def initialize(self) -> None:
        """Initialize the service (storage collections, etc.)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Finish in-flight deliveries, then release storage."""
        await self.router.drain()
        await self.storage.close()

    async def __aenter__(self) -> WebhookService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # Subscriptions

    def default_retry_policy(self) -> RetryPolicy:
        """Retry policy applied when a subscription is created without one."""
        return RetryPolicy(**self.settings.retry_defaults.model_dump())

    async def create_subscription(
        self,
        tenant_id: str,
        name: str,
        url: str,
        events: list[str],
        method: str = "POST",
        content_type: str = "application/json",
        headers: dict[str, str] | None = None,
        security: Any = None,
        include_metadata: bool = False,
        description: str = "",
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
    ) -> WebhookSubscription:
        """Register a new subscription.

        The security config is validated against its method here, so a
        subscription that would sign incorrectly is never stored.

        Raises:
            ValidationError: Any field is invalid.
        """
        data: dict[str, Any] = {
            "tenant_id": tenant_id,
            "name": name,
            "description": description,
            "url": url,
            "method": method,
            "content_type": content_type,
            "events": events,
            "headers": headers or {},
            "include_metadata": include_metadata,
            "retry_policy": retry_policy if retry_policy is not None else self.default_retry_policy(),
        }
        if security is not None:
            data["security"] = security

        try:
            subscription = WebhookSubscription.model_validate(data)
        except PydanticValidationError as e:
            raise _as_validation_error(e) from e

        await self.storage.store_subscription(subscription)
        logger.info(
            "Created subscription %s (%s) for tenant %s",
            subscription.id,
            subscription.public_id,
            tenant_id,
        )
        return subscription

    async def get_subscription(self, subscription_id: str, tenant_id: str) -> WebhookSubscription:
        """Raises NotFoundError if the subscription is not in this tenant."""
        subscription = await self.storage.get_subscription(subscription_id, tenant_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)
        return subscription

    async def get_subscription_by_public_id(
        self,
        public_id: str,
        tenant_id: str,
    ) -> WebhookSubscription:
        """Exact lookup by the receiver-facing identifier."""
        subscription = await self.storage.get_subscription_by_public_id(public_id, tenant_id)
        if subscription is None:
            raise NotFoundError("subscription", public_id)
        return subscription

    async def list_subscriptions(
        self,
        tenant_id: str,
        active_only: bool = False,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        return await self.storage.list_subscriptions(tenant_id, active_only=active_only, limit=limit)

    async def update_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        **updates: Any,
    ) -> WebhookSubscription:
        """Update a subscription and re-validate it as a whole.

        Setting ``active=False`` behaves like deactivate_subscription.

        Raises:
            NotFoundError: No such subscription in this tenant.
            ValidationError: The updated subscription is invalid.
        """
        for key in updates:
            if key in _IMMUTABLE_FIELDS or key not in WebhookSubscription.model_fields:
                raise ValidationError(key, "cannot be updated")

        try:
            updated = await self.storage.update_subscription(subscription_id, tenant_id, **updates)
        except PydanticValidationError as e:
            raise _as_validation_error(e) from e
        if updated is None:
            raise NotFoundError("subscription", subscription_id)

        if not updated.active:
            await self.scheduler.cancel_for_subscription(subscription_id, tenant_id)
        logger.info("Updated subscription %s: %s", subscription_id, sorted(updates))
        return updated

    async def deactivate_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
    ) -> WebhookSubscription:
        """Soft-delete: stop matching events and cancel unclaimed retries.

        Retries already claimed by a worker still run to completion.
        """
        updated = await self.storage.update_subscription(subscription_id, tenant_id, active=False)
        if updated is None:
            raise NotFoundError("subscription", subscription_id)
        cancelled = await self.scheduler.cancel_for_subscription(subscription_id, tenant_id)
        logger.info("Deactivated subscription %s (%d retries cancelled)", subscription_id, cancelled)
        return updated

    # Delivery

    async def trigger_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        tenant_id: str,
    ) -> list[str]:
        """Fan an event out to every matching subscription of the tenant."""
        return await self.router.trigger_event(event_type, payload, tenant_id)

    async def test_delivery(
        self,
        subscription_id: str,
        tenant_id: str,
        event_type: str | None = None,
        sample_data: dict[str, Any] | None = None,
    ) -> TestInvocation:
        return await self.harness.test_delivery(subscription_id, tenant_id, event_type, sample_data)

    async def redeliver(self, correlation_id: str, tenant_id: str) -> str:
        """Re-trigger a delivery from the failed-deliveries queue.

        The original event data goes out again as a new delivery with its
        own correlation ID, starting at attempt 1. Its attempts carry
        ``replay_of`` pointing back at the original.

        Returns:
            The new correlation ID.

        Raises:
            NotFoundError: Unknown delivery or subscription.
            ValidationError: The subscription is inactive.
        """
        history = await self.recorder.get_delivery_history(correlation_id, tenant_id)
        if not history:
            raise NotFoundError("delivery", correlation_id)

        original = history[0]
        subscription = await self.get_subscription(original.subscription_id, tenant_id)
        if not subscription.active:
            raise ValidationError("subscription", f"{subscription.id} is inactive")

        new_id = self.router.dispatch(
            subscription,
            original.event_type,
            dict(original.payload.get("data", {})),
            replay_of=correlation_id,
        )
        logger.info("Redelivering %s as %s", correlation_id, new_id)
        return new_id

    # Read views

    async def list_attempts(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        correlation_id: str | None = None,
        status: AttemptStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[DeliveryAttempt]:
        return await self.recorder.list_attempts(
            tenant_id,
            subscription_id=subscription_id,
            correlation_id=correlation_id,
            status=status,
            since=since,
            until=until,
            limit=limit,
        )

    async def get_delivery_history(
        self,
        correlation_id: str,
        tenant_id: str,
    ) -> list[DeliveryAttempt]:
        return await self.recorder.get_delivery_history(correlation_id, tenant_id)

    async def get_stats(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> DeliveryStats:
        return await self.recorder.get_stats(tenant_id, subscription_id, since, until)

    async def get_failed_deliveries(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        limit: int = 100,
    ) -> list[FailedDelivery]:
        return await self.recorder.get_failed_deliveries(tenant_id, subscription_id, limit)

    async def list_test_invocations(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        limit: int = 20,
    ) -> list[TestInvocation]:
        return await self.recorder.list_test_invocations(tenant_id, subscription_id, limit)

    async def list_jobs(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        correlation_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[RetryJob]:
        return await self.scheduler.list_jobs(
            tenant_id,
            subscription_id=subscription_id,
            correlation_id=correlation_id,
            status=status,
            limit=limit,
        )


__all__ = ["WebhookService"]
