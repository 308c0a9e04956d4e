"""Subscription storage operations.

Subscriptions are upserted on create and update and never deleted;
deactivation is an update that clears the ``active`` flag.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.models.base import utc_now

from .base import MAX_SCAN, match
from .retry import storage_retry

if TYPE_CHECKING:
    from hookrelay.models import WebhookSubscription


class SubscriptionMixin:
    """Mixin providing subscription operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point_id(record_id, tenant_id) -> str
    - _point(point_id, record) -> PointStruct
    - _payload_to_record(payload, record_class) -> RecordT
    - _scroll_all(collection, filter, limit) -> list[dict]
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point_id: Any
    _point: Any
    _payload_to_record: Any
    _scroll_all: Any
    client: Any

    @storage_retry
    async def store_subscription(self, subscription: WebhookSubscription) -> str:
        """Insert or replace a subscription.

        Args:
            subscription: Subscription to store.

        Returns:
            The subscription ID.
        """
        point_id = self._point_id(subscription.id, subscription.tenant_id)
        await self.client.upsert(
            collection_name=self._collection_name("subscriptions"),
            points=[self._point(point_id, subscription)],
            wait=True,
        )
        return subscription.id

    async def get_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
    ) -> WebhookSubscription | None:
        """Get a subscription by ID within a tenant.

        Args:
            subscription_id: ID of the subscription.
            tenant_id: Owning tenant.

        Returns:
            WebhookSubscription or None if not found in this tenant.
        """
        from hookrelay.models import WebhookSubscription

        results = await self.client.retrieve(
            collection_name=self._collection_name("subscriptions"),
            ids=[self._point_id(subscription_id, tenant_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None

        subscription: WebhookSubscription = self._payload_to_record(
            results[0].payload, WebhookSubscription
        )
        return subscription

    async def get_subscription_by_public_id(
        self,
        public_id: str,
        tenant_id: str | None = None,
    ) -> WebhookSubscription | None:
        """Exact lookup by public identifier.

        Args:
            public_id: Receiver-facing identifier (e.g. "WH3F9A0C17BE").
            tenant_id: Restrict the lookup to one tenant.

        Returns:
            The matching subscription, or None.
        """
        from hookrelay.models import WebhookSubscription

        conditions: list[models.Condition] = [match("public_id", public_id)]
        if tenant_id is not None:
            conditions.append(match("tenant_id", tenant_id))

        payloads = await self._scroll_all(
            self._collection_name("subscriptions"),
            models.Filter(must=conditions),
            limit=1,
        )
        if not payloads:
            return None
        subscription: WebhookSubscription = self._payload_to_record(
            payloads[0], WebhookSubscription
        )
        return subscription

    async def list_subscriptions(
        self,
        tenant_id: str,
        active_only: bool = False,
        limit: int = 100,
    ) -> list[WebhookSubscription]:
        """List subscriptions for a tenant, newest first.

        Args:
            tenant_id: Tenant to list subscriptions for.
            active_only: If True, only return active subscriptions.
            limit: Maximum subscriptions to return.

        Returns:
            List of WebhookSubscription.
        """
        from hookrelay.models import WebhookSubscription

        conditions: list[models.Condition] = [match("tenant_id", tenant_id)]
        if active_only:
            conditions.append(match("active", True))

        payloads = await self._scroll_all(
            self._collection_name("subscriptions"),
            models.Filter(must=conditions),
            limit=MAX_SCAN,
        )
        subscriptions = [self._payload_to_record(p, WebhookSubscription) for p in payloads]
        subscriptions.sort(key=lambda s: s.created_at, reverse=True)
        return subscriptions[:limit]

    async def get_subscriptions_for_event(
        self,
        event_type: str,
        tenant_id: str,
        limit: int = 1000,
    ) -> list[WebhookSubscription]:
        """Get all active subscriptions of a tenant listening for an event.

        Args:
            event_type: The event type to filter for.
            tenant_id: Tenant the event belongs to.
            limit: Maximum subscriptions to return.

        Returns:
            Matching subscriptions. Other tenants' subscriptions never match.
        """
        from hookrelay.models import WebhookSubscription

        payloads = await self._scroll_all(
            self._collection_name("subscriptions"),
            models.Filter(
                must=[
                    match("tenant_id", tenant_id),
                    match("active", True),
                    match("events", event_type),
                ]
            ),
            limit=limit,
        )
        subscriptions = [self._payload_to_record(p, WebhookSubscription) for p in payloads]
        # Guard against a store that matched loosely
        return [s for s in subscriptions if s.tenant_id == tenant_id and s.subscribes_to(event_type)]

    async def update_subscription(
        self,
        subscription_id: str,
        tenant_id: str,
        **updates: Any,
    ) -> WebhookSubscription | None:
        """Update fields of a subscription and re-validate the whole model.

        Args:
            subscription_id: ID of the subscription to update.
            tenant_id: Owning tenant.
            **updates: Fields to update. ``id``, ``tenant_id`` and
                ``public_id`` cannot be changed.

        Returns:
            Updated WebhookSubscription or None if not found.

        Raises:
            pydantic.ValidationError: The updated subscription is invalid.
        """
        from hookrelay.models import WebhookSubscription

        subscription = await self.get_subscription(subscription_id, tenant_id)
        if subscription is None:
            return None

        frozen = {"id", "tenant_id", "public_id", "created_at"}
        data = subscription.model_dump()
        data.update({k: v for k, v in updates.items() if k in data and k not in frozen})
        data["updated_at"] = utc_now()

        updated = WebhookSubscription.model_validate(data)
        await self.store_subscription(updated)
        return updated
