"""Event router: fan a domain event out to every matching subscription.

Each matching subscription gets its own asyncio task with its own timeout.
There is no shared limit between subscribers, so a slow or failing endpoint
never delays the others. The caller gets correlation IDs back as soon as the
tasks are started.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import TYPE_CHECKING, Any

from hookrelay.logging import bind_context
from hookrelay.models import WebhookSubscription, generate_id

if TYPE_CHECKING:
    from hookrelay.dispatcher import Dispatcher
    from hookrelay.scheduler import RetryScheduler
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)


class EventRouter:
    """Routes triggered events to subscribed endpoints.

    Example:
        ```python
        router = EventRouter(storage, dispatcher, scheduler)
        correlation_ids = await router.trigger_event(
            "order.created", {"id": 456, "total": 99.99}, tenant_id="acme"
        )
        await router.drain()  # on shutdown
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        dispatcher: Dispatcher,
        scheduler: RetryScheduler,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        # Strong references so in-flight tasks are not garbage collected
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        """Number of delivery tasks not yet finished."""
        return len(self._tasks)

    async def trigger_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        tenant_id: str,
    ) -> list[str]:
        """Start delivery of an event to every active matching subscription.

        Args:
            event_type: Event type, e.g. "order.created".
            payload: Event data. Snapshotted, so later changes by the caller
                do not affect deliveries.
            tenant_id: Tenant the event belongs to.

        Returns:
            One correlation ID per matching subscription. Empty if none match.
        """
        subscriptions = await self._storage.get_subscriptions_for_event(event_type, tenant_id)
        if not subscriptions:
            logger.debug("No subscriptions for %s in tenant %s", event_type, tenant_id)
            return []

        correlation_ids = [
            self.dispatch(subscription, event_type, copy.deepcopy(payload))
            for subscription in subscriptions
        ]
        logger.info(
            "Event %s fanned out to %d subscriptions in tenant %s",
            event_type,
            len(correlation_ids),
            tenant_id,
        )
        return correlation_ids

    def dispatch(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        payload: dict[str, Any],
        replay_of: str | None = None,
    ) -> str:
        """Start one independent delivery task.

        Returns:
            The correlation ID of the new delivery.
        """
        correlation_id = generate_id("dlv")
        task = asyncio.create_task(
            self._deliver(subscription, event_type, payload, correlation_id, replay_of),
            name=f"webhook-{correlation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return correlation_id

    async def _deliver(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        payload: dict[str, Any],
        correlation_id: str,
        replay_of: str | None,
    ) -> None:
        bind_context(correlation_id=correlation_id, subscription_id=subscription.id)
        try:
            attempt = await self._dispatcher.deliver(
                subscription,
                event_type,
                payload,
                attempt_number=1,
                correlation_id=correlation_id,
                replay_of=replay_of,
            )
            await self._scheduler.schedule_retry(subscription, attempt)
        except Exception as e:
            # Contained to this subscription's task
            logger.exception(
                "Delivery %s to subscription %s crashed: %s", correlation_id, subscription.id, e
            )

    async def drain(self) -> None:
        """Wait for every in-flight delivery task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["EventRouter"]
