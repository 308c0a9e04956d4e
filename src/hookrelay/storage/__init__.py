"""Storage backends for HookRelay.

This module provides the storage layer for persisting subscriptions,
delivery attempts, retry jobs and test invocations to Qdrant with
tenant isolation.

Example:
    ```python
    from hookrelay.storage import WebhookStorage

    async with WebhookStorage() as storage:
        await storage.record_attempt(attempt)
        history = await storage.get_delivery_history(correlation_id, tenant_id="acme")
    ```
"""

from .base import COLLECTION_NAMES, IN_MEMORY
from .client import WebhookStorage
from .retry import storage_retry

__all__ = [
    "COLLECTION_NAMES",
    "IN_MEMORY",
    "WebhookStorage",
    "storage_retry",
]
