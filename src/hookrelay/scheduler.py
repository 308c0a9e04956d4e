"""Retry scheduler: durable follow-up attempts with claim-then-execute.

Retries live in storage as RetryJob rows, so they survive a restart. Any
number of workers may poll for due jobs; a job only runs on the worker whose
conditional claim landed. A worker that dies mid-job leaves a lease behind,
and the job becomes claimable again once that lease expires.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from hookrelay.config import Settings, settings as default_settings
from hookrelay.logging import bind_context
from hookrelay.models import (
    DeliveryOutcome,
    JobOutcome,
    JobStatus,
    RetryJob,
    RetryPolicy,
    WebhookSubscription,
    utc_now,
)

if TYPE_CHECKING:
    from hookrelay.dispatcher import Dispatcher
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)

# Added to the request timeout when sizing a claim lease
LEASE_MARGIN_SECONDS = 30.0


def compute_backoff(policy: RetryPolicy, attempt_number: int) -> float:
    """Delay in seconds after attempt ``attempt_number`` failed.

    Fixed backoff repeats base_delay. Exponential backoff doubles it for each
    attempt already made: base, 2*base, 4*base, ... Both are capped at
    max_delay_seconds.

    Args:
        policy: Subscription retry policy.
        attempt_number: The attempt that just failed (1-based).

    Returns:
        Seconds to wait before the next attempt.
    """
    if policy.backoff == "fixed":
        delay = policy.base_delay_seconds
    else:
        delay = policy.base_delay_seconds * (2 ** (attempt_number - 1))
    return min(delay, policy.max_delay_seconds)


class RetryScheduler:
    """Schedules and runs retry jobs.

    Example:
        ```python
        scheduler = RetryScheduler(storage, dispatcher)

        attempt = await dispatcher.deliver(subscription, "order.created", data)
        await scheduler.schedule_retry(subscription, attempt)

        # In the worker process
        await scheduler.run_forever(stop_event)
        ```
    """

    def __init__(
        self,
        storage: WebhookStorage,
        dispatcher: Dispatcher,
        settings: Settings | None = None,
        worker_id: str | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            storage: Storage holding jobs and subscriptions.
            dispatcher: Dispatcher used to perform claimed attempts.
            settings: Configuration. Defaults to the global settings.
            worker_id: Identity written on claims. Defaults to settings.worker_id.
        """
        self._storage = storage
        self._dispatcher = dispatcher
        self._settings = settings or default_settings
        self.worker_id = worker_id or self._settings.worker_id

    def retry_delay(self, policy: RetryPolicy, outcome: DeliveryOutcome) -> float:
        """Backoff for this attempt, stretched to honour a capped Retry-After."""
        delay = compute_backoff(policy, outcome.attempt_number)
        if outcome.retry_after_seconds is not None:
            hint = min(outcome.retry_after_seconds, self._settings.retry_after_max_seconds)
            delay = max(delay, float(hint))
        return delay

    def lease_seconds(self, subscription: WebhookSubscription | None) -> float:
        timeout = subscription.retry_policy.timeout_seconds if subscription else 0.0
        return max(self._settings.claim_lease_seconds, timeout + LEASE_MARGIN_SECONDS)

    async def _is_active(self, subscription: WebhookSubscription) -> bool:
        current = await self._storage.get_subscription(subscription.id, subscription.tenant_id)
        return current is not None and current.active

    async def schedule_retry(
        self,
        subscription: WebhookSubscription,
        outcome: DeliveryOutcome,
        now: datetime | None = None,
    ) -> RetryJob | None:
        """Create the follow-up job for a failed, retryable attempt.

        The subscription is re-read before and after the job is written. A
        subscription deactivated while the attempt was in flight gets no
        new job, and a job that raced a deactivation is cancelled again.

        Args:
            subscription: Subscription the attempt was made for.
            outcome: The attempt that just happened.
            now: Reference time. Defaults to the current time.

        Returns:
            The created job, or None when no retry is due (success,
            terminal failure, no attempts left, or subscription inactive).
        """
        policy = subscription.retry_policy
        if outcome.succeeded or not outcome.retryable:
            return None
        if outcome.attempt_number >= policy.max_attempts:
            return None
        if not await self._is_active(subscription):
            logger.info(
                "Subscription %s is inactive; not retrying %s",
                subscription.id,
                outcome.correlation_id,
            )
            return None

        now = now or utc_now()
        delay = self.retry_delay(policy, outcome)
        job = RetryJob(
            correlation_id=outcome.correlation_id,
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            event_type=outcome.event_type,
            attempt_number=outcome.attempt_number + 1,
            payload=outcome.payload.get("data", {}),
            replay_of=outcome.replay_of,
            scheduled_at=now + timedelta(seconds=delay),
        )
        await self._storage.create_job(job)

        if not await self._is_active(subscription):
            await self.cancel_for_subscription(subscription.id, subscription.tenant_id)
            return None

        logger.info(
            "Scheduled retry %s for %s: attempt %d at %s",
            job.id,
            job.correlation_id,
            job.attempt_number,
            job.scheduled_at.isoformat(),
        )
        return job

    async def run_job(self, job: RetryJob, now: datetime | None = None) -> JobOutcome | None:
        """Claim one job and, if the claim holds, perform its attempt.

        A pending job whose subscription has been deactivated is closed as
        failed without sending. A job taken over from an expired lease
        still runs, since its attempt may already have been started.

        Args:
            job: Job as listed by get_due_jobs.
            now: Claim time. Defaults to the current time. Follow-up
                scheduling is measured from when the attempt finished.

        Returns:
            The job outcome, or None if another worker owns the job.
        """
        now = now or utc_now()
        subscription = await self._storage.get_subscription(job.subscription_id, job.tenant_id)
        lease_until = now + timedelta(seconds=self.lease_seconds(subscription))

        claimed = await self._storage.claim_job(job, self.worker_id, lease_until, now=now)
        if claimed is None:
            return None

        bind_context(correlation_id=job.correlation_id, job_id=job.id)
        started = time.monotonic()

        outcome: JobOutcome
        if subscription is None:
            logger.warning(
                "Subscription %s vanished; abandoning job %s", job.subscription_id, job.id
            )
            outcome = "failed"
        elif not subscription.active and job.status == "pending":
            logger.warning(
                "Subscription %s is inactive; dropping job %s", job.subscription_id, job.id
            )
            outcome = "failed"
        else:
            attempt = await self._dispatcher.deliver(
                subscription,
                claimed.event_type,
                claimed.payload,
                attempt_number=claimed.attempt_number,
                correlation_id=claimed.correlation_id,
                replay_of=claimed.replay_of,
            )
            finished = now + timedelta(seconds=time.monotonic() - started)
            if attempt.succeeded:
                outcome = "success"
            elif await self.schedule_retry(subscription, attempt, now=finished):
                outcome = "rescheduled"
            else:
                outcome = "failed"
                logger.warning(
                    "Delivery %s failed terminally after %d attempts (%s)",
                    attempt.correlation_id,
                    attempt.attempt_number,
                    attempt.error_code,
                )

        finished = now + timedelta(seconds=time.monotonic() - started)
        await self._storage.complete_job(claimed, outcome, now=finished)
        return outcome

    async def run_due_jobs(self, now: datetime | None = None) -> int:
        """Run every job that is due now, across all tenants.

        Jobs run concurrently; a failure in one is logged and does not
        affect the others. A job whose run raised keeps its claim and is
        picked up again after the lease expires.

        Args:
            now: Reference time. Defaults to the current time.

        Returns:
            Number of jobs this worker claimed and completed.
        """
        now = now or utc_now()
        jobs = await self._storage.get_due_jobs(now=now, limit=self._settings.retry_batch_size)
        if not jobs:
            return 0

        results = await asyncio.gather(
            *(self.run_job(job, now=now) for job in jobs),
            return_exceptions=True,
        )

        processed = 0
        for job, result in zip(jobs, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Retry job %s failed: %s", job.id, result, exc_info=result)
            elif result is not None:
                processed += 1
        logger.debug("Processed %d of %d due retry jobs", processed, len(jobs))
        return processed

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll for due jobs until stop_event is set."""
        stop_event = stop_event or asyncio.Event()
        interval = self._settings.retry_poll_interval_seconds
        logger.info("Retry worker %s polling every %.1fs", self.worker_id, interval)

        while not stop_event.is_set():
            try:
                await self.run_due_jobs()
            except Exception as e:
                logger.exception("Retry poll failed: %s", e)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass

        logger.info("Retry worker %s stopped", self.worker_id)

    async def cancel_for_subscription(self, subscription_id: str, tenant_id: str) -> int:
        """Cancel all unclaimed jobs of a subscription."""
        cancelled: int = await self._storage.cancel_pending_jobs(subscription_id, tenant_id)
        if cancelled:
            logger.info("Cancelled %d pending retries for %s", cancelled, subscription_id)
        return cancelled

    async def list_jobs(
        self,
        tenant_id: str,
        subscription_id: str | None = None,
        correlation_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
    ) -> list[RetryJob]:
        return await self._storage.list_jobs(
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            correlation_id=correlation_id,
            status=status,
            limit=limit,
        )


__all__ = ["LEASE_MARGIN_SECONDS", "RetryScheduler", "compute_backoff"]
