"""Qdrant storage client for HookRelay.

This module provides the main WebhookStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from hookrelay.storage import WebhookStorage

    async with WebhookStorage(location=":memory:") as storage:
        await storage.store_subscription(subscription)
        subs = await storage.get_subscriptions_for_event("order.created", tenant_id="acme")
    ```
"""

from __future__ import annotations

import logging

from .attempts import AttemptMixin
from .base import StorageBase
from .jobs import RetryJobMixin
from .subscriptions import SubscriptionMixin

logger = logging.getLogger(__name__)


class WebhookStorage(SubscriptionMixin, AttemptMixin, RetryJobMixin, StorageBase):
    """Async Qdrant storage for subscriptions, attempts and retry jobs.

    Every record lives under a tenant-scoped key, and every listing filters
    on ``tenant_id``. The only cross-tenant read is ``get_due_jobs``, which
    the retry worker uses to find work.

    This class combines functionality from multiple mixins:
    - SubscriptionMixin: store_subscription, get_subscription, list_subscriptions,
      get_subscriptions_for_event, update_subscription
    - AttemptMixin: record_attempt, record_test_invocation, list_attempts,
      get_delivery_history, list_test_invocations
    - RetryJobMixin: create_job, get_job, list_jobs, get_due_jobs, claim_job,
      complete_job, cancel_pending_jobs

    Attributes:
        client: Async Qdrant client instance.
    """

    async def __aenter__(self) -> WebhookStorage:
        """Async context manager entry."""
        await self.initialize()
        logger.debug("Storage initialized with prefix %s", self._prefix)
        return self


__all__ = ["WebhookStorage"]
