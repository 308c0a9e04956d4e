"""Catalog of domain event types and sample payloads.

The catalog is informational: subscriptions may name any well-formed event
type. Sample payloads back the test harness when the caller sends none.
"""

from __future__ import annotations

from typing import Any

EVENT_TYPES: dict[str, str] = {
    "user.created": "User Created",
    "user.updated": "User Updated",
    "user.deleted": "User Deleted",
    "customer.created": "Customer Created",
    "customer.updated": "Customer Updated",
    "order.created": "Order Created",
    "order.updated": "Order Updated",
    "order.completed": "Order Completed",
    "product.created": "Product Created",
    "product.updated": "Product Updated",
    "inventory.low_stock": "Low Stock Alert",
    "invoice.created": "Invoice Created",
    "invoice.paid": "Invoice Paid",
    "project.created": "Project Created",
    "project.updated": "Project Updated",
    "task.created": "Task Created",
    "task.completed": "Task Completed",
}

SAMPLE_EVENT_DATA: dict[str, dict[str, Any]] = {
    "user.created": {"id": 123, "name": "John Doe", "email": "john@example.com"},
    "order.created": {"id": 456, "customer_id": 789, "total": 99.99},
    "product.updated": {"id": 101, "name": "Test Product", "price": 29.99},
    "inventory.low_stock": {"product_id": 202, "current_stock": 5, "reorder_point": 10},
}


def sample_data_for(event_type: str) -> dict[str, Any]:
    """Sample payload for an event type, or an empty dict."""
    return dict(SAMPLE_EVENT_DATA.get(event_type, {}))


__all__ = ["EVENT_TYPES", "SAMPLE_EVENT_DATA", "sample_data_for"]
