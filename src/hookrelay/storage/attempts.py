"""Delivery attempt and test invocation storage.

Both collections are append-only. A record is written once under a point ID
derived from its own ID. Writing the same record again is a no-op, writing
different content under an existing ID is refused.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from qdrant_client import models

from hookrelay.exceptions import StorageError

from .base import MAX_SCAN, SCROLL_PAGE, match, match_any, time_range, ts_field
from .retry import storage_retry

if TYPE_CHECKING:
    from hookrelay.models import AttemptStatus, DeliveryAttempt, TestInvocation

logger = logging.getLogger(__name__)


class AttemptMixin:
    """Mixin providing append-only attempt logging for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point_id(record_id, tenant_id) -> str
    - _point(point_id, record) -> PointStruct
    - _payload_to_record(payload, record_class) -> RecordT
    - _scroll_all(collection, filter, limit, fields) -> list[dict]
    - _count(collection, filter) -> int
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point_id: Any
    _point: Any
    _payload_to_record: Any
    _scroll_all: Any
    _count: Any
    client: Any

    async def _append(self, kind: str, record: DeliveryAttempt | TestInvocation) -> str:
        collection = self._collection_name(kind)
        point_id = self._point_id(record.id, record.tenant_id)
        point = self._point(point_id, record)

        existing = await self.client.retrieve(
            collection_name=collection,
            ids=[point_id],
            with_payload=True,
        )
        if existing:
            # A retried write whose first upsert landed
            if existing[0].payload == point.payload:
                logger.debug("%s record %s already written", kind, record.id)
                return record.id
            raise StorageError(f"{kind} record {record.id} already exists and cannot be modified")

        await self.client.upsert(collection_name=collection, points=[point], wait=True)
        return record.id

    @storage_retry
    async def record_attempt(self, attempt: DeliveryAttempt) -> str:
        """Append a delivery attempt.

        Args:
            attempt: Attempt to record.

        Returns:
            The attempt ID.

        Raises:
            StorageError: A different attempt with this ID was already recorded.
        """
        return await self._append("attempts", attempt)

    @storage_retry
    async def record_test_invocation(self, invocation: TestInvocation) -> str:
        """Append a test-harness invocation.

        Args:
            invocation: Invocation to record.

        Returns:
            The invocation ID.
        """
        return await self._append("tests", invocation)

    @staticmethod
    def _attempt_conditions(
        tenant_id: str,
        subscription_id: str | None = None,
        correlation_id: str | None = None,
        status: AttemptStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[models.Condition]:
        conditions: list[models.Condition] = [match("tenant_id", tenant_id)]
        if subscription_id is not None:
            conditions.append(match("subscription_id", subscription_id))
        if correlation_id is not None:
            conditions.append(match("correlation_id", correlation_id))
        if status is not None:
            conditions.append(match("status", status))
        if since is not None or until is not None:
            conditions.append(time_range("created_at", gte=since, lte=until))
        return conditions

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
        """List delivery attempts, newest first.

        Args:
            tenant_id: Tenant to list attempts for.
            subscription_id: Optional subscription filter.
            correlation_id: Optional delivery filter.
            status: Optional status filter.
            since: Only attempts created at or after this time.
            until: Only attempts created at or before this time.
            limit: Maximum attempts to return.

        Returns:
            List of DeliveryAttempt sorted by created_at descending.
        """
        from hookrelay.models import DeliveryAttempt

        payloads = await self._scroll_all(
            self._collection_name("attempts"),
            models.Filter(
                must=self._attempt_conditions(
                    tenant_id, subscription_id, correlation_id, status, since, until
                )
            ),
            limit=MAX_SCAN,
        )
        attempts: list[DeliveryAttempt] = [
            self._payload_to_record(p, DeliveryAttempt) for p in payloads
        ]
        attempts.sort(key=lambda a: (a.created_at, a.attempt_number), reverse=True)
        return attempts[:limit]

    async def count_attempts(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        status: AttemptStatus | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        """Exact number of attempts matching the filters."""
        count: int = await self._count(
            self._collection_name("attempts"),
            models.Filter(
                must=self._attempt_conditions(
                    tenant_id, subscription_id, status=status, since=since, until=until
                )
            ),
        )
        return count

    async def attempt_timings(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[tuple[int, datetime]]:
        """Latency and creation time of every matching attempt.

        Reads only those two fields, so it can cover the whole log.

        Returns:
            (latency_ms, created_at) pairs in no particular order.
        """
        payloads = await self._scroll_all(
            self._collection_name("attempts"),
            models.Filter(
                must=self._attempt_conditions(
                    tenant_id, subscription_id, since=since, until=until
                )
            ),
            limit=None,
            fields=["latency_ms", ts_field("created_at")],
        )
        return [
            (int(p["latency_ms"]), datetime.fromtimestamp(p[ts_field("created_at")], tz=UTC))
            for p in payloads
        ]

    async def scan_attempts(
        self,
        tenant_id: str,
        statuses: list[AttemptStatus],
        subscription_id: str | None = None,
    ) -> list[DeliveryAttempt]:
        """Every attempt in the given statuses, without a cap.

        Args:
            tenant_id: Tenant to read.
            statuses: Attempt statuses to include.
            subscription_id: Optional subscription filter.

        Returns:
            Matching attempts in storage order.
        """
        from hookrelay.models import DeliveryAttempt

        conditions = self._attempt_conditions(tenant_id, subscription_id)
        conditions.append(match_any("status", list(statuses)))
        payloads = await self._scroll_all(
            self._collection_name("attempts"),
            models.Filter(must=conditions),
            limit=None,
        )
        return [self._payload_to_record(p, DeliveryAttempt) for p in payloads]

    async def correlations_with_status(
        self,
        tenant_id: str,
        correlation_ids: list[str],
        status: AttemptStatus,
    ) -> set[str]:
        """Which of the given deliveries have an attempt in this status."""
        found: set[str] = set()
        for start in range(0, len(correlation_ids), SCROLL_PAGE):
            chunk = correlation_ids[start : start + SCROLL_PAGE]
            conditions = self._attempt_conditions(tenant_id, status=status)
            conditions.append(match_any("correlation_id", chunk))
            payloads = await self._scroll_all(
                self._collection_name("attempts"),
                models.Filter(must=conditions),
                limit=None,
                fields=["correlation_id"],
            )
            found.update(p["correlation_id"] for p in payloads)
        return found

    async def get_delivery_history(
        self,
        correlation_id: str,
        tenant_id: str,
    ) -> list[DeliveryAttempt]:
        """All attempts of one delivery in attempt order.

        Args:
            correlation_id: Delivery to load.
            tenant_id: Owning tenant.

        Returns:
            Attempts sorted by attempt_number ascending.
        """
        attempts = await self.list_attempts(
            tenant_id=tenant_id,
            correlation_id=correlation_id,
            limit=MAX_SCAN,
        )
        attempts.sort(key=lambda a: a.attempt_number)
        return attempts

    async def list_test_invocations(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        limit: int = 20,
    ) -> list[TestInvocation]:
        """List test invocations, newest first.

        Args:
            tenant_id: Tenant to list invocations for.
            subscription_id: Optional subscription filter.
            limit: Maximum invocations to return.

        Returns:
            List of TestInvocation.
        """
        from hookrelay.models import TestInvocation

        conditions: list[models.Condition] = [match("tenant_id", tenant_id)]
        if subscription_id is not None:
            conditions.append(match("subscription_id", subscription_id))

        payloads = await self._scroll_all(
            self._collection_name("tests"),
            models.Filter(must=conditions),
            limit=MAX_SCAN,
        )
        invocations: list[TestInvocation] = [
            self._payload_to_record(p, TestInvocation) for p in payloads
        ]
        invocations.sort(key=lambda i: i.created_at, reverse=True)
        return invocations[:limit]
