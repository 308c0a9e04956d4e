"""Test harness: send one real request to a subscription on demand.

A test delivery uses the same dispatcher path as production traffic, but it
is recorded as a TestInvocation, never retried and never counted in
delivery statistics.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from hookrelay.exceptions import NotFoundError, ValidationError
from hookrelay.models import TestInvocation, generate_id, sample_data_for

if TYPE_CHECKING:
    from hookrelay.dispatcher import Dispatcher
    from hookrelay.recorder import DeliveryRecorder
    from hookrelay.storage import WebhookStorage

logger = logging.getLogger(__name__)


class TestHarness:
    """Runs manual test deliveries."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        storage: WebhookStorage,
        dispatcher: Dispatcher,
        recorder: DeliveryRecorder,
    ) -> None:
        self._storage = storage
        self._dispatcher = dispatcher
        self._recorder = recorder

    async def test_delivery(
        self,
        subscription_id: str,
        tenant_id: str,
        event_type: str | None = None,
        sample_data: dict[str, Any] | None = None,
    ) -> TestInvocation:
        """Make exactly one attempt against a subscription and record it.

        Args:
            subscription_id: Subscription to test.
            tenant_id: Owning tenant.
            event_type: Event type to send. Defaults to the first subscribed one.
            sample_data: Payload to send. Defaults to the built-in sample for
                the event type, or an empty dict.

        Returns:
            The recorded TestInvocation.

        Raises:
            NotFoundError: No such subscription in this tenant.
            ValidationError: Malformed event type.
        """
        subscription = await self._storage.get_subscription(subscription_id, tenant_id)
        if subscription is None:
            raise NotFoundError("subscription", subscription_id)

        event_type = event_type or subscription.events[0]
        if not event_type.strip():
            raise ValidationError("event_type", "must not be empty")
        data = sample_data if sample_data is not None else sample_data_for(event_type)

        outcome = await self._dispatcher.attempt(
            subscription,
            event_type,
            data,
            attempt_number=1,
            correlation_id=generate_id("tst"),
        )
        if outcome.status == "retrying":
            # Tests are never retried
            outcome = outcome.model_copy(update={"status": "failed"})

        invocation = await self._recorder.record_test(outcome)
        logger.info(
            "Test delivery to %s: %s (response %s)",
            subscription.id,
            invocation.status,
            invocation.response_code,
        )
        return invocation


__all__ = ["TestHarness"]
