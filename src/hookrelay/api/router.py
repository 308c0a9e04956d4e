"""FastAPI router for HookRelay API endpoints.

Every endpoint except the health check is scoped to the tenant named in the
``X-Tenant-ID`` header and, when an admin key is configured, requires it in
``X-API-Key``.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from hookrelay import __version__
from hookrelay.exceptions import AuthenticationError, NotFoundError
from hookrelay.models import AttemptStatus, DeliveryStats, JobStatus, TestInvocation
from hookrelay.service import WebhookService

from .schemas import (
    AttemptListResponse,
    FailedDeliveryListResponse,
    HealthResponse,
    JobListResponse,
    RedeliverResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
    TestDeliveryRequest,
    TestInvocationListResponse,
    TriggerEventRequest,
    TriggerEventResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]


async def require_api_key(
    service: ServiceDep,
    x_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Check X-API-Key against the configured admin key, if one is set."""
    expected = service.settings.admin_api_key
    if expected is None:
        return
    if x_api_key is None or not hmac.compare_digest(x_api_key, expected):
        raise AuthenticationError("Missing or invalid X-API-Key")


async def get_tenant_id(
    x_tenant_id: Annotated[str, Header(min_length=1)],
) -> str:
    """Tenant the request acts on, from the X-Tenant-ID header."""
    return x_tenant_id


TenantDep = Annotated[str, Depends(get_tenant_id)]

_admin = [Depends(require_api_key)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    connected = _service is not None
    return HealthResponse(
        status="healthy" if connected else "unhealthy",
        version=__version__,
        storage_connected=connected,
    )


@router.post(
    "/events",
    response_model=TriggerEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=_admin,
    tags=["events"],
)
async def trigger_event(
    request: TriggerEventRequest,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> TriggerEventResponse:
    """Trigger an event and fan it out to matching subscriptions.

    Returns as soon as deliveries are started. Track them through the
    returned correlation IDs.
    """
    correlation_ids = await service.trigger_event(request.event_type, request.payload, tenant_id)
    return TriggerEventResponse(
        event_type=request.event_type,
        correlation_ids=correlation_ids,
        count=len(correlation_ids),
    )


@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def create_subscription(
    request: SubscriptionCreateRequest,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> SubscriptionResponse:
    """Register a new subscription."""
    subscription = await service.create_subscription(
        tenant_id=tenant_id,
        name=request.name,
        url=request.url,
        events=request.events,
        method=request.method,
        content_type=request.content_type,
        headers=request.headers,
        security=request.security,
        include_metadata=request.include_metadata,
        description=request.description,
        retry_policy=request.retry_policy,
    )
    return SubscriptionResponse.from_subscription(subscription)


@router.get(
    "/subscriptions",
    response_model=SubscriptionListResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def list_subscriptions(
    service: ServiceDep,
    tenant_id: TenantDep,
    active_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> SubscriptionListResponse:
    """List the tenant's subscriptions, newest first."""
    subscriptions = await service.list_subscriptions(tenant_id, active_only=active_only, limit=limit)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.from_subscription(s) for s in subscriptions],
        count=len(subscriptions),
    )


@router.get(
    "/subscriptions/by-public-id/{public_id}",
    response_model=SubscriptionResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def get_subscription_by_public_id(
    public_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> SubscriptionResponse:
    """Look a subscription up by its receiver-facing ID (exact match)."""
    subscription = await service.get_subscription_by_public_id(public_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.get(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def get_subscription(
    subscription_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> SubscriptionResponse:
    subscription = await service.get_subscription(subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.patch(
    "/subscriptions/{subscription_id}",
    response_model=SubscriptionResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def update_subscription(
    subscription_id: str,
    request: SubscriptionUpdateRequest,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> SubscriptionResponse:
    """Update the fields present in the request body."""
    updates = {name: getattr(request, name) for name in request.model_fields_set}
    subscription = await service.update_subscription(subscription_id, tenant_id, **updates)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/subscriptions/{subscription_id}/deactivate",
    response_model=SubscriptionResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def deactivate_subscription(
    subscription_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> SubscriptionResponse:
    """Deactivate a subscription and cancel its unclaimed retries."""
    subscription = await service.deactivate_subscription(subscription_id, tenant_id)
    return SubscriptionResponse.from_subscription(subscription)


@router.post(
    "/subscriptions/{subscription_id}/test",
    response_model=TestInvocation,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def test_subscription(
    subscription_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
    request: TestDeliveryRequest | None = None,
) -> TestInvocation:
    """Send one test request now. Never retried, never counted in stats."""
    request = request or TestDeliveryRequest()
    return await service.test_delivery(
        subscription_id,
        tenant_id,
        event_type=request.event_type,
        sample_data=request.sample_data,
    )


@router.get(
    "/subscriptions/{subscription_id}/stats",
    response_model=DeliveryStats,
    dependencies=_admin,
    tags=["deliveries"],
)
async def get_subscription_stats(
    subscription_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
    since: datetime | None = None,
    until: datetime | None = None,
) -> DeliveryStats:
    await service.get_subscription(subscription_id, tenant_id)
    return await service.get_stats(tenant_id, subscription_id, since=since, until=until)


@router.get("/stats", response_model=DeliveryStats, dependencies=_admin, tags=["deliveries"])
async def get_stats(
    service: ServiceDep,
    tenant_id: TenantDep,
    since: datetime | None = None,
    until: datetime | None = None,
) -> DeliveryStats:
    """Delivery statistics across all of the tenant's subscriptions."""
    return await service.get_stats(tenant_id, since=since, until=until)


@router.get(
    "/attempts",
    response_model=AttemptListResponse,
    dependencies=_admin,
    tags=["deliveries"],
)
async def list_attempts(
    service: ServiceDep,
    tenant_id: TenantDep,
    subscription_id: str | None = None,
    correlation_id: str | None = None,
    status: AttemptStatus | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> AttemptListResponse:
    """List delivery attempts, newest first."""
    attempts = await service.list_attempts(
        tenant_id,
        subscription_id=subscription_id,
        correlation_id=correlation_id,
        status=status,
        since=since,
        until=until,
        limit=limit,
    )
    return AttemptListResponse(attempts=attempts, count=len(attempts))


@router.get(
    "/deliveries/{correlation_id}",
    response_model=AttemptListResponse,
    dependencies=_admin,
    tags=["deliveries"],
)
async def get_delivery_history(
    correlation_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> AttemptListResponse:
    """All attempts of one delivery, in attempt order."""
    attempts = await service.get_delivery_history(correlation_id, tenant_id)
    if not attempts:
        raise NotFoundError("delivery", correlation_id)
    return AttemptListResponse(attempts=attempts, count=len(attempts))


@router.post(
    "/deliveries/{correlation_id}/redeliver",
    response_model=RedeliverResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=_admin,
    tags=["deliveries"],
)
async def redeliver(
    correlation_id: str,
    service: ServiceDep,
    tenant_id: TenantDep,
) -> RedeliverResponse:
    """Send a failed delivery again as a new delivery."""
    new_id = await service.redeliver(correlation_id, tenant_id)
    return RedeliverResponse(correlation_id=new_id, replay_of=correlation_id)


@router.get(
    "/failed-deliveries",
    response_model=FailedDeliveryListResponse,
    dependencies=_admin,
    tags=["deliveries"],
)
async def list_failed_deliveries(
    service: ServiceDep,
    tenant_id: TenantDep,
    subscription_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> FailedDeliveryListResponse:
    """Deliveries that will not be attempted again."""
    deliveries = await service.get_failed_deliveries(tenant_id, subscription_id, limit)
    return FailedDeliveryListResponse(deliveries=deliveries, count=len(deliveries))


@router.get("/jobs", response_model=JobListResponse, dependencies=_admin, tags=["deliveries"])
async def list_jobs(
    service: ServiceDep,
    tenant_id: TenantDep,
    subscription_id: str | None = None,
    correlation_id: str | None = None,
    status: JobStatus | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> JobListResponse:
    """List retry jobs, earliest scheduled first."""
    jobs = await service.list_jobs(
        tenant_id,
        subscription_id=subscription_id,
        correlation_id=correlation_id,
        status=status,
        limit=limit,
    )
    return JobListResponse(jobs=jobs, count=len(jobs))


@router.get(
    "/test-invocations",
    response_model=TestInvocationListResponse,
    dependencies=_admin,
    tags=["subscriptions"],
)
async def list_test_invocations(
    service: ServiceDep,
    tenant_id: TenantDep,
    subscription_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 20,
) -> TestInvocationListResponse:
    invocations = await service.list_test_invocations(tenant_id, subscription_id, limit)
    return TestInvocationListResponse(invocations=invocations, count=len(invocations))
