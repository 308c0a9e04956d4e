"""Helpers shared by the test modules."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx

from hookrelay.models import RetryPolicy, WebhookSubscription

TENANT = "acme"
OTHER_TENANT = "globex"
RECEIVER_URL = "https://receiver.example.com/hooks"

ResponseSpec = int | httpx.Response | type[Exception] | Callable[[httpx.Request], Any]


class Receiver:
    """Scripted webhook receiver behind an httpx.MockTransport.

    Each request consumes the next scripted response. Ints become responses
    with that status, exception classes are raised with the request attached,
    callables are called with the request. When the script runs out, every
    request gets ``default``.
    """

    def __init__(self, *script: ResponseSpec, default: int = 200) -> None:
        self.script: list[ResponseSpec] = list(script)
        self.default = default
        self.requests: list[httpx.Request] = []

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        spec: ResponseSpec = self.script.pop(0) if self.script else self.default
        if isinstance(spec, int):
            return httpx.Response(spec, text="ok" if spec < 400 else f"error {spec}")
        if isinstance(spec, httpx.Response):
            return spec
        if isinstance(spec, type) and issubclass(spec, Exception):
            raise spec("scripted failure", request=request)  # type: ignore[call-arg]
        result = spec(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_subscription(**overrides: Any) -> WebhookSubscription:
    """Build a valid subscription, overriding any field."""
    data: dict[str, Any] = {
        "tenant_id": TENANT,
        "name": "Orders",
        "url": RECEIVER_URL,
        "events": ["order.created"],
        "retry_policy": RetryPolicy(
            max_attempts=3,
            base_delay_seconds=60,
            timeout_seconds=5,
            max_delay_seconds=3600,
        ),
    }
    data.update(overrides)
    return WebhookSubscription.model_validate(data)
