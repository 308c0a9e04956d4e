"""Tests for event fan-out."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from helpers import OTHER_TENANT, TENANT, make_subscription

from hookrelay.dispatcher import Dispatcher
from hookrelay.events import EventRouter
from hookrelay.recorder import DeliveryRecorder
from hookrelay.scheduler import RetryScheduler


class Hosts:
    """Mock transport answering per receiver host."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.release = asyncio.Event()

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host.startswith("slow"):
            await self.release.wait()
        if host.startswith("down"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    def hosts(self) -> list[str]:
        return sorted(r.url.host for r in self.requests)


@pytest.fixture
def hosts() -> Hosts:
    return Hosts()


@pytest.fixture
def router(storage, test_settings, hosts) -> EventRouter:
    dispatcher = Dispatcher(
        DeliveryRecorder(storage),
        test_settings,
        transport=httpx.MockTransport(hosts.handle),
    )
    scheduler = RetryScheduler(storage, dispatcher, test_settings)
    return EventRouter(storage, dispatcher, scheduler)


async def _store(storage, *subscriptions):
    for sub in subscriptions:
        await storage.store_subscription(sub)
    return subscriptions


class TestTriggerEvent:
    async def test_fans_out_to_matching(self, router, storage, hosts) -> None:
        await _store(
            storage,
            make_subscription(name="A", url="https://a.example.com/hook"),
            make_subscription(name="B", url="https://b.example.com/hook"),
            make_subscription(name="C", url="https://c.example.com/hook", events=["invoice.paid"]),
        )

        correlation_ids = await router.trigger_event("order.created", {"id": 1}, TENANT)
        await router.drain()

        assert len(correlation_ids) == 2
        assert len(set(correlation_ids)) == 2
        assert hosts.hosts() == ["a.example.com", "b.example.com"]
        for correlation_id in correlation_ids:
            [attempt] = await storage.get_delivery_history(correlation_id, TENANT)
            assert attempt.status == "success"
            assert attempt.attempt_number == 1

    async def test_no_matching_subscription(self, router, hosts) -> None:
        assert await router.trigger_event("order.created", {"id": 1}, TENANT) == []
        assert router.in_flight == 0
        assert hosts.requests == []

    async def test_inactive_subscription_skipped(self, router, storage, hosts) -> None:
        await _store(storage, make_subscription(active=False))

        assert await router.trigger_event("order.created", {}, TENANT) == []

    async def test_never_crosses_tenants(self, router, storage, hosts) -> None:
        await _store(
            storage,
            make_subscription(url="https://mine.example.com/hook"),
            make_subscription(tenant_id=OTHER_TENANT, url="https://theirs.example.com/hook"),
        )

        await router.trigger_event("order.created", {}, TENANT)
        await router.drain()

        assert hosts.hosts() == ["mine.example.com"]

    async def test_returns_before_delivery(self, router, storage, hosts) -> None:
        await _store(storage, make_subscription(url="https://slow.example.com/hook"))

        [correlation_id] = await router.trigger_event("order.created", {}, TENANT)
        assert router.in_flight == 1
        assert await storage.get_delivery_history(correlation_id, TENANT) == []

        hosts.release.set()
        await router.drain()
        assert router.in_flight == 0
        assert len(await storage.get_delivery_history(correlation_id, TENANT)) == 1

    async def test_payload_snapshot(self, router, storage, hosts) -> None:
        await _store(storage, make_subscription())
        payload = {"id": 1, "items": ["a"]}

        await router.trigger_event("order.created", payload, TENANT)
        payload["id"] = 2
        payload["items"].append("b")
        await router.drain()

        body = json.loads(hosts.requests[0].content)
        assert body["data"] == {"id": 1, "items": ["a"]}


class TestIsolation:
    """One subscriber's trouble never holds up another."""

    async def test_slow_subscriber_does_not_block(self, router, storage, hosts) -> None:
        await _store(
            storage,
            make_subscription(name="Slow", url="https://slow.example.com/hook"),
            make_subscription(name="Fast", url="https://fast.example.com/hook"),
        )
        await router.trigger_event("order.created", {}, TENANT)

        for _ in range(200):
            if router.in_flight == 1:
                break
            await asyncio.sleep(0.01)

        fast = await storage.list_attempts(TENANT)
        assert len(fast) == 1
        assert router.in_flight == 1

        hosts.release.set()
        await router.drain()
        assert len(await storage.list_attempts(TENANT)) == 2

    async def test_failing_subscriber_does_not_affect_others(self, router, storage) -> None:
        down, up = await _store(
            storage,
            make_subscription(name="Down", url="https://down.example.com/hook"),
            make_subscription(name="Up", url="https://up.example.com/hook"),
        )

        await router.trigger_event("order.created", {}, TENANT)
        await router.drain()

        [down_attempt] = await storage.list_attempts(TENANT, subscription_id=down.id)
        [up_attempt] = await storage.list_attempts(TENANT, subscription_id=up.id)
        assert down_attempt.error_code == "network_error"
        assert up_attempt.status == "success"
        assert len(await storage.list_jobs(TENANT, subscription_id=down.id)) == 1

    async def test_crash_contained_to_task(self, router, storage) -> None:
        await _store(
            storage,
            make_subscription(name="A", url="https://a.example.com/hook"),
            make_subscription(name="B", url="https://b.example.com/hook"),
        )
        router._scheduler.schedule_retry = AsyncMock(side_effect=RuntimeError("boom"))

        correlation_ids = await router.trigger_event("order.created", {}, TENANT)
        await router.drain()

        assert len(correlation_ids) == 2
        assert router._scheduler.schedule_retry.await_count == 2
        assert len(await storage.list_attempts(TENANT)) == 2


class TestDispatch:
    async def test_replay_marker_recorded(self, router, storage) -> None:
        sub = make_subscription()
        correlation_id = router.dispatch(sub, "order.created", {"id": 1}, replay_of="dlv_old")
        await router.drain()

        [attempt] = await storage.get_delivery_history(correlation_id, TENANT)
        assert attempt.replay_of == "dlv_old"
        assert correlation_id != "dlv_old"
