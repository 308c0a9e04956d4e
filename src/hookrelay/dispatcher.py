"""Webhook dispatcher: one bounded HTTP attempt, classified and recorded.

The dispatcher is the only place that decides what a response means. It
turns every attempt into a DeliveryOutcome whose ``retryable`` flag is all
the retry scheduler needs to know:

    signing config invalid   -> failed, not retryable   (configuration_error)
    network error / timeout  -> failed, retryable       (network_error)
    200-399                  -> success
    429                      -> failed, retryable       (rate_limited, Retry-After kept)
    other 4xx                -> failed, not retryable   (client_error, body kept)
    5xx                      -> failed, retryable       (server_error)

A retryable failure on the last allowed attempt is recorded as failed with
error code exhausted_retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import httpx

from hookrelay.config import Settings, settings as default_settings
from hookrelay.exceptions import (
    ClientError,
    ConfigurationError,
    DeliveryError,
    ExhaustedRetries,
    HookRelayError,
    NetworkError,
    RateLimited,
    ServerError,
)
from hookrelay.models import (
    AttemptStatus,
    DeliveryAttempt,
    DeliveryOutcome,
    WebhookEnvelope,
    WebhookSubscription,
    generate_id,
    utc_now,
)
from hookrelay.serialization import serialize_body
from hookrelay.signing import sign_request

if TYPE_CHECKING:
    from hookrelay.recorder import DeliveryRecorder

logger = logging.getLogger(__name__)


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """Parse a Retry-After header given as seconds or as an HTTP date.

    Args:
        value: Raw header value.
        now: Reference time for HTTP dates. Defaults to the current time.

    Returns:
        Non-negative seconds to wait, or None if absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        return None
    delta = (when - (now or utc_now())).total_seconds()
    return max(0, int(delta))


def classify_response(response: httpx.Response, body_max_chars: int = 1000) -> DeliveryError | None:
    """Map an HTTP response to a delivery error, or None on success."""
    status = response.status_code
    if 200 <= status < 400:
        return None

    body = response.text[:body_max_chars] if response.text else None
    if status == 429:
        return RateLimited(
            "Receiver rate limited the request (HTTP 429)",
            response_body=body,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if 400 <= status < 500:
        return ClientError(f"Receiver rejected the request (HTTP {status})", status, body)
    if status >= 500:
        return ServerError(f"Receiver failed (HTTP {status})", status, body)
    return ServerError(f"Unexpected HTTP status {status}", status, body)


class Dispatcher:
    """Sends one webhook request and reports what happened.

    Example:
        ```python
        dispatcher = Dispatcher(recorder)
        attempt = await dispatcher.deliver(subscription, "order.created", {"id": 42})
        if attempt.status == "retrying":
            await scheduler.schedule_retry(subscription, attempt)
        ```
    """

    def __init__(
        self,
        recorder: DeliveryRecorder | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            recorder: Where deliver() writes attempts. Not needed for attempt().
            settings: Configuration. Defaults to the global settings.
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests.
        """
        self._recorder = recorder
        self._settings = settings or default_settings
        self._transport = transport

    def build_envelope(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        data: dict[str, Any],
    ) -> WebhookEnvelope:
        metadata = None
        if subscription.include_metadata:
            metadata = {
                "subscription_name": subscription.name,
                "subscription_url": str(subscription.url),
                "subscription_created_at": subscription.created_at.isoformat(),
            }
        return WebhookEnvelope(
            subscription_public_id=subscription.public_id,
            event_type=event_type,
            tenant_id=subscription.tenant_id,
            data=data,
            metadata=metadata,
        )

    def build_headers(
        self,
        subscription: WebhookSubscription,
        body: bytes,
        timestamp: int | None = None,
    ) -> dict[str, str]:
        """Standard headers, then custom headers, then security headers.

        Raises:
            ConfigurationError: The security config cannot produce headers,
                or a header cannot be encoded for the wire.
        """
        headers = {
            "Content-Type": subscription.content_type,
            "User-Agent": self._settings.user_agent,
            "X-Webhook-ID": subscription.public_id,
            "X-Event-Source": self._settings.event_source,
        }
        headers.update(subscription.headers)
        headers.update(sign_request(subscription.security, body, timestamp))
        try:
            # httpx encodes header values when the request is built
            httpx.Headers(headers)
        except UnicodeError as e:
            raise ConfigurationError(f"Header cannot be sent: {e}") from e
        return headers

    async def _send(
        self,
        subscription: WebhookSubscription,
        body: bytes,
        headers: dict[str, str],
    ) -> httpx.Response:
        timeout = subscription.retry_policy.timeout_seconds
        async with httpx.AsyncClient(
            timeout=timeout,
            verify=True,
            transport=self._transport,
        ) as client:
            return await client.request(
                subscription.method,
                str(subscription.url),
                content=body,
                headers=headers,
            )

    async def attempt(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        data: dict[str, Any],
        attempt_number: int = 1,
        correlation_id: str | None = None,
        replay_of: str | None = None,
    ) -> DeliveryOutcome:
        """Perform one attempt without recording it.

        Args:
            subscription: Target subscription.
            event_type: Event type being delivered.
            data: Event payload.
            attempt_number: 1 for the first attempt.
            correlation_id: Delivery this attempt belongs to. Generated if omitted.
            replay_of: Correlation ID this delivery re-triggers, if any.

        Returns:
            The classified outcome. Never raises for delivery failures.
        """
        correlation_id = correlation_id or generate_id("dlv")
        envelope = self.build_envelope(subscription, event_type, data)
        snapshot = envelope.to_body()
        policy = subscription.retry_policy

        error: HookRelayError | None = None
        response: httpx.Response | None = None
        started = time.perf_counter()
        try:
            body = serialize_body(snapshot, subscription.content_type)
            headers = self.build_headers(subscription, body)
            response = await asyncio.wait_for(
                self._send(subscription, body, headers),
                timeout=policy.timeout_seconds,
            )
        except ConfigurationError as e:
            error = e
        except (TimeoutError, httpx.TimeoutException):
            error = NetworkError(f"Request timed out after {policy.timeout_seconds:g}s")
        except httpx.RequestError as e:
            error = NetworkError(f"{type(e).__name__}: {e}")
        latency_ms = int((time.perf_counter() - started) * 1000)

        if response is not None:
            error = classify_response(response, self._settings.response_body_max_chars)
        exhausted = attempt_number >= policy.max_attempts
        if isinstance(error, DeliveryError) and error.retryable and exhausted:
            error = ExhaustedRetries(
                f"Max attempts ({policy.max_attempts}) reached: {error.message}",
                error.status_code,
                error.response_body,
            )

        retryable = isinstance(error, DeliveryError) and error.retryable
        status: AttemptStatus
        if error is None:
            status = "success"
        elif retryable:
            status = "retrying"
        else:
            status = "failed"

        outcome = DeliveryOutcome(
            correlation_id=correlation_id,
            attempt_number=attempt_number,
            replay_of=replay_of,
            subscription_id=subscription.id,
            tenant_id=subscription.tenant_id,
            event_type=event_type,
            payload=snapshot,
            status=status,
            retryable=retryable,
            error_code=error.code if error else None,
            error=error.message if error else None,
            response_code=response.status_code if response is not None else None,
            response_body=(
                response.text[: self._settings.response_body_max_chars] or None
                if response is not None
                else None
            ),
            latency_ms=latency_ms,
            retry_after_seconds=error.retry_after if isinstance(error, RateLimited) else None,
        )
        self._log_outcome(subscription, outcome)
        return outcome

    def _log_outcome(self, subscription: WebhookSubscription, outcome: DeliveryOutcome) -> None:
        if outcome.succeeded:
            logger.info(
                "Webhook delivered: %s to %s (status %s, %dms)",
                outcome.event_type,
                subscription.url,
                outcome.response_code,
                outcome.latency_ms,
            )
        elif outcome.status == "retrying":
            logger.info(
                "Webhook attempt %d failed, will retry: %s to %s (%s)",
                outcome.attempt_number,
                outcome.event_type,
                subscription.url,
                outcome.error,
            )
        else:
            logger.warning(
                "Webhook failed: %s to %s after attempt %d (%s: %s)",
                outcome.event_type,
                subscription.url,
                outcome.attempt_number,
                outcome.error_code,
                outcome.error,
            )

    async def deliver(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        data: dict[str, Any],
        attempt_number: int = 1,
        correlation_id: str | None = None,
        replay_of: str | None = None,
    ) -> DeliveryAttempt:
        """Perform one attempt and record it.

        Exactly one DeliveryAttempt is written per call, whatever the outcome.

        Returns:
            The recorded attempt.

        Raises:
            ConfigurationError: No recorder was configured.
            StorageError: The attempt could not be recorded.
        """
        if self._recorder is None:
            raise ConfigurationError("Dispatcher.deliver() requires a DeliveryRecorder")
        outcome = await self.attempt(
            subscription,
            event_type,
            data,
            attempt_number=attempt_number,
            correlation_id=correlation_id,
            replay_of=replay_of,
        )
        return await self._recorder.record(outcome)


__all__ = ["Dispatcher", "classify_response", "parse_retry_after"]
