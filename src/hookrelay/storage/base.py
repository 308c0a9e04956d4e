"""Base storage class and helpers.

Contains initialization, collection management, and shared utilities.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from hookrelay.config import settings

RecordT = TypeVar("RecordT", bound=BaseModel)

# Collection suffixes by record kind
COLLECTION_NAMES = {
    "subscriptions": "subscriptions",
    "attempts": "delivery_attempts",
    "jobs": "retry_jobs",
    "tests": "test_invocations",
}

# Keyword fields used in filters, indexed on server deployments
KEYWORD_INDEXES: dict[str, tuple[str, ...]] = {
    "subscriptions": ("tenant_id", "public_id", "events"),
    "attempts": ("tenant_id", "subscription_id", "correlation_id", "status"),
    "jobs": ("tenant_id", "subscription_id", "correlation_id", "status", "claim_token"),
    "tests": ("tenant_id", "subscription_id"),
}

# Datetime fields mirrored as unix floats so Range filters work on them
TIMESTAMP_FIELDS = ("created_at", "scheduled_at", "lease_expires_at")

# Records carry no embedding; every point gets the same one-dimensional vector
PLACEHOLDER_VECTOR = [1.0]

IN_MEMORY = ":memory:"

# Upper bound on points read by one listing before it is sorted and cut
MAX_SCAN = 10_000

# Points fetched per scroll request
SCROLL_PAGE = 256


def ts_field(name: str) -> str:
    """Payload key holding the numeric mirror of a datetime field."""
    return f"{name.removesuffix('_at')}_ts"


class StorageBase:
    """Base class for HookRelay storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Key building and point ID conversion
    - Payload serialization/deserialization
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
        location: str | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL. Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
            location: ":memory:" or a local path for embedded Qdrant.
                Defaults to settings.qdrant_location; overrides url when set.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._location = location if location is not None else settings.qdrant_location
        self._client: AsyncQdrantClient | None = None

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise RuntimeError("Storage not initialized. Call initialize() first.")
        return self._client

    @property
    def is_local(self) -> bool:
        """Whether Qdrant runs embedded in this process."""
        return bool(self._location)

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist."""
        if self._location == IN_MEMORY:
            self._client = AsyncQdrantClient(location=IN_MEMORY)
        elif self._location:
            self._client = AsyncQdrantClient(path=self._location)
        else:
            self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        await self._ensure_collections()

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def __aenter__(self) -> StorageBase:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def _collection_name(self, kind: str) -> str:
        """Get full collection name with prefix."""
        return f"{self._prefix}_{COLLECTION_NAMES[kind]}"

    @staticmethod
    def _build_key(record_id: str, tenant_id: str) -> str:
        """Build a tenant-scoped storage key: {tenant_id}/{record_id}."""
        return f"{tenant_id}/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    def _point_id(self, record_id: str, tenant_id: str) -> str:
        return self._key_to_point_id(self._build_key(record_id, tenant_id))

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for kind in COLLECTION_NAMES:
            collection_name = self._collection_name(kind)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            # Embedded Qdrant ignores payload indexes
            if not self.is_local:
                await self._create_indexes(kind)

    async def _create_indexes(self, kind: str) -> None:
        """Create payload indexes for efficient filtering."""
        collection_name = self._collection_name(kind)
        for field_name in KEYWORD_INDEXES[kind]:
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        for field_name in TIMESTAMP_FIELDS:
            await self.client.create_payload_index(
                collection_name=collection_name,
                field_name=ts_field(field_name),
                field_schema=models.PayloadSchemaType.FLOAT,
            )

    def _record_to_payload(self, record: BaseModel) -> dict[str, Any]:
        """Convert a record model to Qdrant payload."""
        data = record.model_dump(mode="json")
        for name in TIMESTAMP_FIELDS:
            value = getattr(record, name, None)
            if isinstance(value, datetime):
                data[ts_field(name)] = value.timestamp()
        return data

    def _payload_to_record(self, payload: dict[str, Any], record_class: type[RecordT]) -> RecordT:
        """Convert Qdrant payload back to a record model."""
        data = dict(payload)
        for name in TIMESTAMP_FIELDS:
            data.pop(ts_field(name), None)
        return record_class.model_validate(data)

    def _point(self, point_id: str, record: BaseModel) -> models.PointStruct:
        return models.PointStruct(
            id=point_id,
            vector=PLACEHOLDER_VECTOR,
            payload=self._record_to_payload(record),
        )

    async def _scroll_all(
        self,
        collection_name: str,
        scroll_filter: models.Filter | None,
        limit: int | None,
        fields: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Scroll through matching points, following pagination.

        Args:
            collection_name: Collection to read.
            scroll_filter: Points to include.
            limit: Stop after this many points. None reads every match.
            fields: Payload keys to fetch. Defaults to the whole payload.

        Returns:
            Payloads in point ID order.
        """
        payloads: list[dict[str, Any]] = []
        offset: Any = None
        while limit is None or len(payloads) < limit:
            page = SCROLL_PAGE if limit is None else min(SCROLL_PAGE, limit - len(payloads))
            points, offset = await self.client.scroll(
                collection_name=collection_name,
                scroll_filter=scroll_filter,
                limit=page,
                offset=offset,
                with_payload=fields if fields is not None else True,
                with_vectors=False,
            )
            payloads.extend(p.payload for p in points if p.payload is not None)
            if offset is None:
                break
        return payloads

    async def _count(self, collection_name: str, count_filter: models.Filter) -> int:
        """Exact number of points matching a filter."""
        result = await self.client.count(
            collection_name=collection_name,
            count_filter=count_filter,
            exact=True,
        )
        return int(result.count)


def match(key: str, value: Any) -> models.FieldCondition:
    """Exact-match condition on a payload field."""
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def match_any(key: str, values: list[Any]) -> models.FieldCondition:
    """Condition matching any of several values of a payload field."""
    return models.FieldCondition(key=key, match=models.MatchAny(any=values))


def time_range(
    field: str,
    gte: datetime | None = None,
    lte: datetime | None = None,
    lt: datetime | None = None,
) -> models.FieldCondition:
    """Range condition on the numeric mirror of a datetime field."""
    return models.FieldCondition(
        key=ts_field(field),
        range=models.Range(
            gte=gte.timestamp() if gte else None,
            lte=lte.timestamp() if lte else None,
            lt=lt.timestamp() if lt else None,
        ),
    )
