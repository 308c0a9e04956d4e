"""Tests for the delivery recorder and its read views."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

from helpers import TENANT

from hookrelay.models import DeliveryOutcome, RetryJob, utc_now
from hookrelay.recorder import DeliveryRecorder, summarize_attempts


def _outcome(
    correlation_id: str,
    attempt_number: int = 1,
    status: str = "success",
    latency_ms: int = 100,
    **extra,
) -> DeliveryOutcome:
    data = {
        "correlation_id": correlation_id,
        "attempt_number": attempt_number,
        "subscription_id": "sub_1",
        "tenant_id": TENANT,
        "event_type": "order.created",
        "payload": {"data": {"id": 42}},
        "status": status,
        "latency_ms": latency_ms,
    }
    data.update(extra)
    return DeliveryOutcome(**data)


class TestSummarizeAttempts:
    def test_empty(self) -> None:
        stats = summarize_attempts([])
        assert stats.total == 0
        assert stats.success_rate == 0.0
        assert stats.avg_latency_ms is None
        assert stats.last_delivery_at is None

    def test_counts_and_latency(self) -> None:
        attempts = [
            _outcome("a", status="success", latency_ms=100).to_attempt(),
            _outcome("b", status="success", latency_ms=200).to_attempt(),
            _outcome("c", status="failed", latency_ms=50).to_attempt(),
        ]
        stats = summarize_attempts(attempts)

        assert (stats.total, stats.successful, stats.failed, stats.retrying) == (3, 2, 1, 0)
        assert stats.success_rate == 66.67
        assert stats.avg_latency_ms == 116.67
        assert (stats.min_latency_ms, stats.max_latency_ms) == (50, 200)
        assert stats.last_delivery_at == max(a.created_at for a in attempts)


class TestRecorder:
    async def test_record_appends(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        attempt = await recorder.record(_outcome("dlv_1"))

        assert [a.id for a in await recorder.list_attempts(TENANT)] == [attempt.id]

    async def test_stats_exclude_tests(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        await recorder.record(_outcome("dlv_1", status="failed"))
        await recorder.record_test(_outcome("tst_1", status="success"))

        stats = await recorder.get_stats(TENANT)
        assert stats.total == 1
        assert stats.failed == 1
        assert len(await recorder.list_test_invocations(TENANT)) == 1

    async def test_stats_per_subscription_and_window(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        now = utc_now()
        await recorder.record(_outcome("dlv_1", created_at=now - timedelta(days=3)))
        await recorder.record(_outcome("dlv_2", created_at=now))
        await recorder.record(_outcome("dlv_3", subscription_id="sub_2"))

        assert (await recorder.get_stats(TENANT, "sub_1")).total == 2
        recent = await recorder.get_stats(TENANT, "sub_1", since=now - timedelta(days=1))
        assert recent.total == 1


class TestFailedDeliveries:
    async def test_only_terminal_failures(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        # Recovered after a retry
        await recorder.record(_outcome("dlv_ok", 1, "retrying"))
        await recorder.record(_outcome("dlv_ok", 2, "success"))
        # Rejected by the receiver
        await recorder.record(
            _outcome("dlv_bad", 1, "failed", error_code="client_error", response_code=400)
        )
        # Still waiting on a retry
        await recorder.record(_outcome("dlv_wait", 1, "retrying"))
        await storage.create_job(
            RetryJob(
                correlation_id="dlv_wait",
                subscription_id="sub_1",
                tenant_id=TENANT,
                event_type="order.created",
                attempt_number=2,
                scheduled_at=utc_now() + timedelta(minutes=1),
            )
        )

        failed = await recorder.get_failed_deliveries(TENANT)

        assert [f.correlation_id for f in failed] == ["dlv_bad"]
        assert failed[0].last_error_code == "client_error"
        assert failed[0].last_response_code == 400
        assert failed[0].payload == {"id": 42}

    async def test_retrying_without_open_job(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        await recorder.record(_outcome("dlv_orphan", 1, "retrying"))

        [failed] = await recorder.get_failed_deliveries(TENANT)
        assert failed.correlation_id == "dlv_orphan"

    async def test_exhausted(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        for n in (1, 2):
            await recorder.record(_outcome("dlv_x", n, "retrying"))
        await recorder.record(_outcome("dlv_x", 3, "failed", error_code="exhausted_retries"))

        [failed] = await recorder.get_failed_deliveries(TENANT)
        assert failed.attempts == 3
        assert failed.last_error_code == "exhausted_retries"


class TestLargeLogs:
    """Aggregates read the whole log, not a capped listing."""

    async def _seed(self, recorder: DeliveryRecorder) -> None:
        now = utc_now()
        for i in range(5):
            created_at = now - timedelta(minutes=i)
            await recorder.record(
                _outcome(f"dlv_ok{i}", latency_ms=100 * (i + 1), created_at=created_at)
            )
        for i in range(3):
            created_at = now - timedelta(days=1, minutes=i)
            await recorder.record(_outcome(f"dlv_bad{i}", status="failed", created_at=created_at))

    async def test_stats_exact_past_listing_cap(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        await self._seed(recorder)

        with (
            patch("hookrelay.storage.attempts.MAX_SCAN", 2),
            patch("hookrelay.storage.base.SCROLL_PAGE", 2),
        ):
            assert len(await recorder.list_attempts(TENANT)) == 2
            stats = await recorder.get_stats(TENANT)

        assert (stats.total, stats.successful, stats.failed) == (8, 5, 3)
        assert stats.success_rate == 62.5
        assert (stats.min_latency_ms, stats.max_latency_ms) == (100, 500)
        assert stats.avg_latency_ms == 225.0

    async def test_old_failures_stay_in_queue(self, storage) -> None:
        recorder = DeliveryRecorder(storage)
        await self._seed(recorder)

        with (
            patch("hookrelay.storage.attempts.MAX_SCAN", 2),
            patch("hookrelay.storage.base.SCROLL_PAGE", 2),
        ):
            failed = await recorder.get_failed_deliveries(TENANT)

        assert sorted(f.correlation_id for f in failed) == ["dlv_bad0", "dlv_bad1", "dlv_bad2"]
