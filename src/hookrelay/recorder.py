"""Delivery recorder: the append-only attempt log and its read views.

Every dispatcher attempt becomes exactly one DeliveryAttempt. Statistics and
the failed-deliveries queue are computed from those rows on read.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING

from hookrelay.models import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStats,
    FailedDelivery,
    TestInvocation,
)

if TYPE_CHECKING:
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)

# Statuses that can leave a delivery without a successful attempt
_UNRESOLVED: list[AttemptStatus] = ["failed", "retrying"]


def _build_stats(
    total: int,
    counts: dict[str, int],
    latencies: list[int],
    last_delivery_at: datetime | None,
) -> DeliveryStats:
    if not total:
        return DeliveryStats()
    return DeliveryStats(
        total=total,
        successful=counts.get("success", 0),
        failed=counts.get("failed", 0),
        retrying=counts.get("retrying", 0),
        success_rate=round(counts.get("success", 0) / total * 100, 2),
        avg_latency_ms=round(sum(latencies) / len(latencies), 2) if latencies else None,
        min_latency_ms=min(latencies) if latencies else None,
        max_latency_ms=max(latencies) if latencies else None,
        last_delivery_at=last_delivery_at,
    )


def summarize_attempts(attempts: list[DeliveryAttempt]) -> DeliveryStats:
    """Compute delivery statistics over a set of attempts.

    Args:
        attempts: Attempts to summarize, in any order.

    Returns:
        DeliveryStats. Latency figures are None when there are no attempts.
    """
    counts: dict[str, int] = defaultdict(int)
    for attempt in attempts:
        counts[attempt.status] += 1
    return _build_stats(
        len(attempts),
        counts,
        [a.latency_ms for a in attempts],
        max((a.created_at for a in attempts), default=None),
    )


class DeliveryRecorder:
    """Writes attempt records and serves the read-side views.

    Example:
        ```python
        recorder = DeliveryRecorder(storage)
        attempt = await recorder.record(outcome)
        stats = await recorder.get_stats("acme", subscription_id="sub_123")
        ```
    """

    def __init__(self, storage: WebhookStorage) -> None:
        self._storage = storage

    async def record(self, outcome: DeliveryOutcome) -> DeliveryAttempt:
        """Append the attempt for a production delivery outcome."""
        attempt = outcome.to_attempt()
        await self._storage.record_attempt(attempt)
        logger.debug(
            "Recorded attempt %s (%s #%d: %s)",
            attempt.id,
            attempt.correlation_id,
            attempt.attempt_number,
            attempt.status,
        )
        return attempt

    async def record_test(self, outcome: DeliveryOutcome) -> TestInvocation:
        """Append a test-harness invocation. Kept out of production views."""
        invocation = outcome.to_test_invocation()
        await self._storage.record_test_invocation(invocation)
        return invocation

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
        return await self._storage.list_attempts(
            tenant_id=tenant_id,
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
        return await self._storage.get_delivery_history(correlation_id, tenant_id)

    async def list_test_invocations(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        limit: int = 20,
    ) -> list[TestInvocation]:
        return await self._storage.list_test_invocations(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            limit=limit,
        )

    async def get_stats(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> DeliveryStats:
        """Attempt statistics for a tenant, optionally one subscription.

        Counters come from exact storage counts and latency figures from a
        scan of every matching attempt, so busy subscriptions are not
        truncated. Test invocations are never included.
        """
        scope = {
            "tenant_id": tenant_id,
            "subscription_id": subscription_id,
            "since": since,
            "until": until,
        }
        total = await self._storage.count_attempts(**scope)
        if not total:
            return DeliveryStats()

        counts = {
            status: await self._storage.count_attempts(status=status, **scope)
            for status in ("success", "failed", "retrying")
        }
        timings = await self._storage.attempt_timings(**scope)
        return _build_stats(
            total,
            counts,
            [latency for latency, _ in timings],
            max((created_at for _, created_at in timings), default=None),
        )

    async def get_failed_deliveries(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        limit: int = 100,
    ) -> list[FailedDelivery]:
        """Deliveries that will not be attempted again.

        A delivery is listed when its latest attempt failed, or when it is
        still marked retrying but no open job remains for it (its jobs were
        cancelled on deactivation). Every failed or retrying attempt is
        read, however old.

        Args:
            tenant_id: Tenant to inspect.
            subscription_id: Optional subscription filter.
            limit: Maximum rows to return.

        Returns:
            FailedDelivery rows, most recent failure first.
        """
        attempts = await self._storage.scan_attempts(
            tenant_id,
            _UNRESOLVED,
            subscription_id=subscription_id,
        )

        latest: dict[str, DeliveryAttempt] = {}
        for attempt in attempts:
            current = latest.get(attempt.correlation_id)
            if current is None or attempt.attempt_number > current.attempt_number:
                latest[attempt.correlation_id] = attempt
        if not latest:
            return []

        # A later attempt succeeded
        for correlation_id in await self._storage.correlations_with_status(
            tenant_id, list(latest), "success"
        ):
            del latest[correlation_id]

        open_correlations: set[str] = set()
        if any(a.status == "retrying" for a in latest.values()):
            open_correlations = await self._storage.open_job_correlations(
                tenant_id, subscription_id=subscription_id
            )

        failed = [
            FailedDelivery(
                correlation_id=a.correlation_id,
                subscription_id=a.subscription_id,
                tenant_id=a.tenant_id,
                event_type=a.event_type,
                attempts=a.attempt_number,
                last_error_code=a.error_code,
                last_error=a.error,
                last_response_code=a.response_code,
                last_attempt_at=a.created_at,
                payload=a.payload.get("data", {}),
            )
            for a in latest.values()
            if a.status == "failed"
            or (a.status == "retrying" and a.correlation_id not in open_correlations)
        ]
        failed.sort(key=lambda f: f.last_attempt_at, reverse=True)
        return failed[:limit]


__all__ = ["DeliveryRecorder", "summarize_attempts"]
