"""Tests for the retry scheduler and the end-to-end retry flow."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest
from helpers import TENANT, Receiver, make_subscription

from hookrelay.dispatcher import Dispatcher
from hookrelay.events import EventRouter
from hookrelay.models import DeliveryOutcome, HmacSha256, RetryJob, RetryPolicy, utc_now
from hookrelay.recorder import DeliveryRecorder
from hookrelay.scheduler import RetryScheduler, compute_backoff


class Stack:
    """Dispatcher, scheduler and router wired to one storage and receiver."""

    def __init__(self, storage, settings, receiver: Receiver, worker_id: str = "worker-a") -> None:
        self.storage = storage
        self.receiver = receiver
        self.recorder = DeliveryRecorder(storage)
        self.dispatcher = Dispatcher(self.recorder, settings, transport=receiver.transport)
        self.scheduler = RetryScheduler(storage, self.dispatcher, settings, worker_id=worker_id)
        self.router = EventRouter(storage, self.dispatcher, self.scheduler)

    async def trigger(self, payload: dict | None = None) -> str:
        [correlation_id] = await self.router.trigger_event(
            "order.created", payload or {"id": 42}, TENANT
        )
        await self.router.drain()
        return correlation_id

    async def run_next_job(self, correlation_id: str) -> int:
        """Run due jobs just after the pending job for this delivery is due."""
        [job] = await self.storage.list_jobs(TENANT, correlation_id=correlation_id, status="pending")
        return await self.scheduler.run_due_jobs(now=job.scheduled_at + timedelta(seconds=1))


@pytest.fixture
async def subscription(storage):
    sub = make_subscription(
        url="https://example.test/hook",
        security=HmacSha256(secret="s3cr3t"),
        retry_policy=RetryPolicy(max_attempts=3, base_delay_seconds=60, timeout_seconds=5),
    )
    await storage.store_subscription(sub)
    return sub


def _outcome(attempt_number: int = 1, status: str = "retrying", **extra) -> DeliveryOutcome:
    data = {
        "correlation_id": "dlv_1",
        "attempt_number": attempt_number,
        "subscription_id": "sub_1",
        "tenant_id": TENANT,
        "event_type": "order.created",
        "payload": {"data": {"id": 42}},
        "status": status,
        "retryable": status == "retrying",
    }
    data.update(extra)
    return DeliveryOutcome(**data)


class TestComputeBackoff:
    def test_fixed(self) -> None:
        policy = RetryPolicy(backoff="fixed", base_delay_seconds=60)
        assert [compute_backoff(policy, n) for n in (1, 2, 3)] == [60, 60, 60]

    def test_exponential(self) -> None:
        policy = RetryPolicy(backoff="exponential", base_delay_seconds=60)
        assert [compute_backoff(policy, n) for n in (1, 2, 3)] == [60, 120, 240]

    def test_capped(self) -> None:
        policy = RetryPolicy(base_delay_seconds=60, max_delay_seconds=100)
        assert compute_backoff(policy, 3) == 100


class TestRetryDelay:
    async def test_retry_after_stretches_delay(self, storage, test_settings) -> None:
        scheduler = RetryScheduler(storage, Dispatcher(settings=test_settings), test_settings)
        assert scheduler.retry_delay(RetryPolicy(), _outcome(retry_after_seconds=600)) == 600

    async def test_retry_after_never_shortens_delay(self, storage, test_settings) -> None:
        scheduler = RetryScheduler(storage, Dispatcher(settings=test_settings), test_settings)
        assert scheduler.retry_delay(RetryPolicy(), _outcome(retry_after_seconds=5)) == 60

    async def test_retry_after_capped(self, storage, test_settings) -> None:
        settings = test_settings.model_copy(update={"retry_after_max_seconds": 100})
        scheduler = RetryScheduler(storage, Dispatcher(settings=settings), settings)
        assert scheduler.retry_delay(RetryPolicy(), _outcome(retry_after_seconds=99999)) == 100

    async def test_lease_covers_timeout(self, storage, test_settings) -> None:
        scheduler = RetryScheduler(storage, Dispatcher(settings=test_settings), test_settings)
        slow = make_subscription(retry_policy=RetryPolicy(timeout_seconds=300))

        assert scheduler.lease_seconds(make_subscription()) == test_settings.claim_lease_seconds
        assert scheduler.lease_seconds(slow) == 330


class TestScheduleRetry:
    @pytest.fixture
    def scheduler(self, storage, test_settings) -> RetryScheduler:
        return RetryScheduler(storage, Dispatcher(settings=test_settings), test_settings)

    async def test_creates_next_attempt(self, scheduler, storage, subscription) -> None:
        now = utc_now()
        job = await scheduler.schedule_retry(subscription, _outcome(), now=now)

        assert job.attempt_number == 2
        assert job.payload == {"id": 42}
        assert job.scheduled_at == now + timedelta(seconds=60)
        assert (await storage.get_job(job.id, TENANT)).status == "pending"

    async def test_nothing_for_success(self, scheduler, subscription) -> None:
        assert await scheduler.schedule_retry(subscription, _outcome(status="success")) is None

    async def test_nothing_for_terminal_failure(self, scheduler, subscription) -> None:
        outcome = _outcome(status="failed", error_code="client_error")
        assert await scheduler.schedule_retry(subscription, outcome) is None

    async def test_nothing_after_last_attempt(self, scheduler, subscription) -> None:
        assert await scheduler.schedule_retry(subscription, _outcome(attempt_number=3)) is None

    async def test_carries_replay_marker(self, scheduler, subscription) -> None:
        job = await scheduler.schedule_retry(subscription, _outcome(replay_of="dlv_0"))
        assert job.replay_of == "dlv_0"

    async def test_nothing_for_inactive_subscription(
        self, scheduler, storage, subscription
    ) -> None:
        await storage.update_subscription(subscription.id, TENANT, active=False)

        assert await scheduler.schedule_retry(subscription, _outcome()) is None
        assert await storage.list_jobs(TENANT) == []

    async def test_job_racing_deactivation_is_cancelled(
        self, scheduler, storage, subscription
    ) -> None:
        create_job = storage.create_job

        async def create_then_deactivate(job: RetryJob) -> str:
            job_id = await create_job(job)
            await storage.update_subscription(subscription.id, TENANT, active=False)
            return job_id

        with patch.object(storage, "create_job", create_then_deactivate):
            assert await scheduler.schedule_retry(subscription, _outcome()) is None

        [job] = await storage.list_jobs(TENANT)
        assert job.status == "cancelled"


class TestRetryFlow:
    """A delivery from trigger through its retries."""

    async def test_recovers_on_second_attempt(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(500, 200))
        correlation_id = await stack.trigger()

        [attempt1] = await storage.get_delivery_history(correlation_id, TENANT)
        assert attempt1.status == "retrying"
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert job.attempt_number == 2
        assert job.scheduled_at - attempt1.created_at >= timedelta(seconds=59)

        assert await stack.run_next_job(correlation_id) == 1

        history = await storage.get_delivery_history(correlation_id, TENANT)
        assert [a.status for a in history] == ["retrying", "success"]
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert job.status == "done"
        assert job.outcome == "success"
        assert stack.receiver.calls == 2

    async def test_retry_resends_same_data(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(500, 200))
        correlation_id = await stack.trigger({"id": 42, "total": 99.99})
        await stack.run_next_job(correlation_id)

        first, second = (r.content for r in stack.receiver.requests)
        assert b'"data":{"id":42,"total":99.99}' in first
        assert b'"data":{"id":42,"total":99.99}' in second

    async def test_exhausts_after_max_attempts(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(default=500))
        correlation_id = await stack.trigger()
        await stack.run_next_job(correlation_id)
        await stack.run_next_job(correlation_id)

        history = await storage.get_delivery_history(correlation_id, TENANT)
        assert [a.status for a in history] == ["retrying", "retrying", "failed"]
        assert history[-1].error_code == "exhausted_retries"

        jobs = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert [j.outcome for j in jobs] == ["rescheduled", "failed"]
        assert all(j.status == "done" for j in jobs)

        [failed] = await stack.recorder.get_failed_deliveries(TENANT)
        assert failed.correlation_id == correlation_id
        assert failed.attempts == 3
        assert failed.payload == {"id": 42}

    async def test_client_error_never_retried(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(400))
        correlation_id = await stack.trigger()

        [attempt] = await storage.get_delivery_history(correlation_id, TENANT)
        assert attempt.status == "failed"
        assert await storage.list_jobs(TENANT) == []

    async def test_rate_limit_honors_retry_after(self, storage, test_settings, subscription) -> None:
        receiver = Receiver(httpx.Response(429, headers={"Retry-After": "600"}), 200)
        stack = Stack(storage, test_settings, receiver)
        correlation_id = await stack.trigger()

        [attempt1] = await storage.get_delivery_history(correlation_id, TENANT)
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert job.scheduled_at - attempt1.created_at >= timedelta(seconds=599)

        # Not due at the normal backoff
        early = await stack.scheduler.run_due_jobs(now=attempt1.created_at + timedelta(seconds=61))
        assert early == 0

        assert await stack.run_next_job(correlation_id) == 1
        assert stack.receiver.calls == 2

    async def test_next_retry_measured_from_attempt_end(
        self, storage, test_settings, subscription
    ) -> None:
        async def slow_failure(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.2)
            return httpx.Response(500)

        stack = Stack(storage, test_settings, Receiver(500, slow_failure))
        correlation_id = await stack.trigger()
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        when = job.scheduled_at + timedelta(seconds=1)

        assert await stack.scheduler.run_due_jobs(now=when) == 1

        done = await storage.get_job(job.id, TENANT)
        [next_job] = await storage.list_jobs(
            TENANT, correlation_id=correlation_id, status="pending"
        )
        # Second retry backs off 120s from when attempt 2 finished
        assert next_job.scheduled_at >= when + timedelta(seconds=120.15)
        assert done.completed_at >= when + timedelta(seconds=0.15)


class TestWorkers:
    async def test_two_workers_one_attempt(self, storage, test_settings, subscription) -> None:
        receiver = Receiver(500, 200)
        a = Stack(storage, test_settings, receiver, worker_id="worker-a")
        b = Stack(storage, test_settings, receiver, worker_id="worker-b")
        correlation_id = await a.trigger()

        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        when = job.scheduled_at + timedelta(seconds=1)
        processed = await asyncio.gather(
            a.scheduler.run_due_jobs(now=when),
            b.scheduler.run_due_jobs(now=when),
        )

        assert sum(processed) == 1
        assert receiver.calls == 2
        assert len(await storage.get_delivery_history(correlation_id, TENANT)) == 2

    async def test_abandoned_claim_taken_over(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(500, 200))
        correlation_id = await stack.trigger()
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)

        # worker-z claims and dies
        claimed_at = job.scheduled_at + timedelta(seconds=1)
        lease = claimed_at + timedelta(seconds=test_settings.claim_lease_seconds)
        assert await storage.claim_job(job, "worker-z", lease, now=claimed_at)
        assert await stack.scheduler.run_due_jobs(now=claimed_at + timedelta(seconds=10)) == 0

        assert await stack.scheduler.run_due_jobs(now=lease + timedelta(seconds=1)) == 1
        [done] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert done.claimed_by == "worker-a"
        assert done.outcome == "success"

    async def test_missing_subscription(self, storage, test_settings) -> None:
        stack = Stack(storage, test_settings, Receiver())
        job = RetryJob(
            correlation_id="dlv_1",
            subscription_id="sub_gone",
            tenant_id=TENANT,
            event_type="order.created",
            attempt_number=2,
            scheduled_at=utc_now() - timedelta(seconds=1),
        )
        await storage.create_job(job)

        assert await stack.scheduler.run_due_jobs() == 1
        stored = await storage.get_job(job.id, TENANT)
        assert stored.status == "done"
        assert stored.outcome == "failed"
        assert stack.receiver.calls == 0

    async def test_run_forever_stops(self, storage, test_settings, subscription) -> None:
        settings = test_settings.model_copy(update={"retry_poll_interval_seconds": 0.01})
        stack = Stack(storage, settings, Receiver())
        await storage.create_job(
            RetryJob(
                correlation_id="dlv_1",
                subscription_id=subscription.id,
                tenant_id=TENANT,
                event_type="order.created",
                attempt_number=2,
                payload={"id": 42},
                scheduled_at=utc_now() - timedelta(seconds=1),
            )
        )
        stop = asyncio.Event()
        task = asyncio.create_task(stack.scheduler.run_forever(stop))

        for _ in range(200):
            if stack.receiver.calls:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

        assert stack.receiver.calls == 1


class TestCancellation:
    async def test_deactivation_cancels_pending(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(500))
        correlation_id = await stack.trigger()
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)

        await storage.update_subscription(subscription.id, TENANT, active=False)
        assert await stack.scheduler.cancel_for_subscription(subscription.id, TENANT) == 1

        later = job.scheduled_at + timedelta(hours=1)
        assert await stack.scheduler.run_due_jobs(now=later) == 0
        assert stack.receiver.calls == 1
        # The delivery will not be retried again, so it is surfaced as failed
        [failed] = await stack.recorder.get_failed_deliveries(TENANT)
        assert failed.correlation_id == correlation_id

    async def test_claimed_job_survives_cancel(self, storage, test_settings, subscription) -> None:
        stack = Stack(storage, test_settings, Receiver(500, 200))
        correlation_id = await stack.trigger()
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        now = job.scheduled_at + timedelta(seconds=1)
        await storage.claim_job(job, "worker-z", now + timedelta(seconds=120), now=now)

        assert await stack.scheduler.cancel_for_subscription(subscription.id, TENANT) == 0
        assert (await storage.get_job(job.id, TENANT)).status == "in_progress"

    async def test_deactivated_mid_attempt_gets_no_new_retry(
        self, storage, test_settings, subscription
    ) -> None:
        async def deactivate_then_fail(request: httpx.Request) -> httpx.Response:
            await storage.update_subscription(subscription.id, TENANT, active=False)
            await storage.cancel_pending_jobs(subscription.id, TENANT)
            return httpx.Response(500)

        stack = Stack(storage, test_settings, Receiver(500, deactivate_then_fail, 500))
        correlation_id = await stack.trigger()
        assert await stack.run_next_job(correlation_id) == 1

        assert await storage.list_jobs(TENANT, status="pending") == []
        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert job.outcome == "failed"
        assert await stack.scheduler.run_due_jobs(now=utc_now() + timedelta(days=1)) == 0
        assert stack.receiver.calls == 2

        [failed] = await stack.recorder.get_failed_deliveries(TENANT)
        assert failed.correlation_id == correlation_id
        assert failed.attempts == 2

    async def test_pending_job_of_inactive_subscription_not_sent(
        self, storage, test_settings, subscription
    ) -> None:
        stack = Stack(storage, test_settings, Receiver(500))
        correlation_id = await stack.trigger()
        # Deactivated without its jobs being cancelled
        await storage.update_subscription(subscription.id, TENANT, active=False)

        assert await stack.run_next_job(correlation_id) == 1

        [job] = await storage.list_jobs(TENANT, correlation_id=correlation_id)
        assert job.status == "done"
        assert job.outcome == "failed"
        assert stack.receiver.calls == 1
