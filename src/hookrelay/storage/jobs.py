"""Retry job storage with conditional status transitions.

Status changes are written with ``set_payload`` against a filter that
includes the expected current state, so a transition only lands when the
job is still where the caller thinks it is. The claim writes a fresh random
token; reading the job back and finding our token is the proof of
ownership. Two workers racing for the same job therefore end with exactly
one owner.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from qdrant_client import models

from hookrelay.models.base import utc_now

from .base import MAX_SCAN, match, match_any, time_range, ts_field
from .retry import storage_retry

if TYPE_CHECKING:
    from hookrelay.models import JobOutcome, JobStatus, RetryJob

logger = logging.getLogger(__name__)


class RetryJobMixin:
    """Mixin providing retry job operations for WebhookStorage.

    This mixin expects the following attributes/methods from the base class:
    - _collection_name(kind) -> str
    - _point_id(record_id, tenant_id) -> str
    - _point(point_id, record) -> PointStruct
    - _payload_to_record(payload, record_class) -> RecordT
    - _scroll_all(collection, filter, limit, fields) -> list[dict]
    - client: AsyncQdrantClient
    """

    _collection_name: Any
    _point_id: Any
    _point: Any
    _payload_to_record: Any
    _scroll_all: Any
    client: Any

    @storage_retry
    async def create_job(self, job: RetryJob) -> str:
        """Store a new pending retry job.

        Args:
            job: Job to store.

        Returns:
            The job ID.
        """
        await self.client.upsert(
            collection_name=self._collection_name("jobs"),
            points=[self._point(self._point_id(job.id, job.tenant_id), job)],
            wait=True,
        )
        return job.id

    async def get_job(self, job_id: str, tenant_id: str) -> RetryJob | None:
        """Get a retry job by ID.

        Args:
            job_id: ID of the job.
            tenant_id: Owning tenant.

        Returns:
            RetryJob or None if not found.
        """
        from hookrelay.models import RetryJob

        results = await self.client.retrieve(
            collection_name=self._collection_name("jobs"),
            ids=[self._point_id(job_id, tenant_id)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        job: RetryJob = self._payload_to_record(results[0].payload, RetryJob)
        return job

    async def list_jobs(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        correlation_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[RetryJob]:
        """List retry jobs ordered by scheduled time.

        Args:
            tenant_id: Tenant to list jobs for.
            subscription_id: Optional subscription filter.
            correlation_id: Optional delivery filter.
            status: Optional status filter.
            limit: Maximum jobs to return.

        Returns:
            List of RetryJob sorted by scheduled_at ascending.
        """
        from hookrelay.models import RetryJob

        conditions: list[models.Condition] = [match("tenant_id", tenant_id)]
        if subscription_id is not None:
            conditions.append(match("subscription_id", subscription_id))
        if correlation_id is not None:
            conditions.append(match("correlation_id", correlation_id))
        if status is not None:
            conditions.append(match("status", status))

        payloads = await self._scroll_all(
            self._collection_name("jobs"),
            models.Filter(must=conditions),
            limit=MAX_SCAN,
        )
        jobs: list[RetryJob] = [self._payload_to_record(p, RetryJob) for p in payloads]
        jobs.sort(key=lambda j: j.scheduled_at)
        return jobs[:limit]

    async def open_job_correlations(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
    ) -> set[str]:
        """Deliveries that still have a pending or in-progress job."""
        conditions: list[models.Condition] = [
            match("tenant_id", tenant_id),
            match_any("status", ["pending", "in_progress"]),
        ]
        if subscription_id is not None:
            conditions.append(match("subscription_id", subscription_id))

        payloads = await self._scroll_all(
            self._collection_name("jobs"),
            models.Filter(must=conditions),
            limit=None,
            fields=["correlation_id"],
        )
        return {p["correlation_id"] for p in payloads}

    def _claimable_filter(self, now: datetime) -> models.Filter:
        """Pending and due, or in progress with an expired lease."""
        return models.Filter(
            should=[
                models.Filter(
                    must=[
                        match("status", "pending"),
                        time_range("scheduled_at", lte=now),
                    ]
                ),
                models.Filter(
                    must=[
                        match("status", "in_progress"),
                        time_range("lease_expires_at", lt=now),
                    ]
                ),
            ]
        )

    async def get_due_jobs(self, now: datetime | None = None, limit: int = 50) -> list[RetryJob]:
        """Jobs any worker may claim right now, across all tenants.

        Args:
            now: Reference time. Defaults to the current time.
            limit: Maximum jobs to return.

        Returns:
            Claimable jobs, earliest scheduled first.
        """
        from hookrelay.models import RetryJob

        now = now or utc_now()
        payloads = await self._scroll_all(
            self._collection_name("jobs"),
            self._claimable_filter(now),
            limit=MAX_SCAN,
        )
        jobs: list[RetryJob] = [self._payload_to_record(p, RetryJob) for p in payloads]
        jobs = [j for j in jobs if j.is_due(now)]
        jobs.sort(key=lambda j: j.scheduled_at)
        return jobs[:limit]

    @storage_retry
    async def claim_job(
        self,
        job: RetryJob,
        worker_id: str,
        lease_until: datetime,
        now: datetime | None = None,
    ) -> RetryJob | None:
        """Atomically take ownership of a claimable job.

        The write only applies while the job is still pending and due, or
        in progress with an expired lease. Ownership is confirmed by reading
        back our claim token.

        Args:
            job: Job to claim (as previously listed).
            worker_id: Identity of the claiming worker.
            lease_until: When the claim lapses if the worker goes silent.
            now: Reference time. Defaults to the current time.

        Returns:
            The claimed job, or None if another worker owns it or it is no
            longer claimable.
        """
        now = now or utc_now()
        point_id = self._point_id(job.id, job.tenant_id)
        token = uuid4().hex

        await self.client.set_payload(
            collection_name=self._collection_name("jobs"),
            payload={
                "status": "in_progress",
                "claimed_by": worker_id,
                "claim_token": token,
                "claimed_at": now.isoformat(),
                "lease_expires_at": lease_until.isoformat(),
                ts_field("lease_expires_at"): lease_until.timestamp(),
            },
            points=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.HasIdCondition(has_id=[point_id]),
                        self._claimable_filter(now),
                    ]
                )
            ),
            wait=True,
        )

        claimed = await self.get_job(job.id, job.tenant_id)
        if claimed is None or claimed.claim_token != token:
            logger.debug("Job %s already claimed by another worker", job.id)
            return None
        return claimed

    @storage_retry
    async def complete_job(
        self,
        job: RetryJob,
        outcome: JobOutcome,
        now: datetime | None = None,
    ) -> bool:
        """Mark a claimed job done, provided we still hold the claim.

        Args:
            job: Job as returned by claim_job.
            outcome: success, rescheduled or failed.
            now: Completion time. Defaults to the current time.

        Returns:
            True if the job moved to done under our claim token.
        """
        now = now or utc_now()
        point_id = self._point_id(job.id, job.tenant_id)

        await self.client.set_payload(
            collection_name=self._collection_name("jobs"),
            payload={
                "status": "done",
                "outcome": outcome,
                "completed_at": now.isoformat(),
            },
            points=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.HasIdCondition(has_id=[point_id]),
                        match("status", "in_progress"),
                        match("claim_token", job.claim_token),
                    ]
                )
            ),
            wait=True,
        )

        current = await self.get_job(job.id, job.tenant_id)
        done = current is not None and current.status == "done" and current.claim_token == job.claim_token
        if not done:
            logger.warning("Lost claim on job %s before completion", job.id)
        return done

    @storage_retry
    async def cancel_pending_jobs(
        self,
        subscription_id: str,
        tenant_id: str,
        now: datetime | None = None,
    ) -> int:
        """Cancel every unclaimed job of a subscription.

        Jobs already in progress are left alone and finish normally.

        Args:
            subscription_id: Subscription whose jobs to cancel.
            tenant_id: Owning tenant.
            now: Cancellation time. Defaults to the current time.

        Returns:
            Number of jobs cancelled.
        """
        now = now or utc_now()
        pending = await self.list_jobs(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            status="pending",
            limit=MAX_SCAN,
        )
        if not pending:
            return 0

        point_ids = [self._point_id(j.id, tenant_id) for j in pending]
        stamp = now.isoformat()
        await self.client.set_payload(
            collection_name=self._collection_name("jobs"),
            payload={"status": "cancelled", "completed_at": stamp},
            points=models.FilterSelector(
                filter=models.Filter(
                    must=[
                        models.HasIdCondition(has_id=point_ids),
                        match("status", "pending"),
                    ]
                )
            ),
            wait=True,
        )

        results = await self.client.retrieve(
            collection_name=self._collection_name("jobs"),
            ids=point_ids,
            with_payload=True,
        )
        return sum(
            1
            for r in results
            if r.payload
            and r.payload.get("status") == "cancelled"
            and r.payload.get("completed_at") == stamp
        )
