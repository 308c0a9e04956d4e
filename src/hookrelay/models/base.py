"""Base helpers shared by HookRelay models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("sub") -> "sub_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def generate_public_id() -> str:
    """Generate the public, receiver-facing subscription identifier.

    Sent as ``subscription_public_id`` in the envelope and as the
    ``X-Webhook-ID`` header. Lookups by this value are exact.

    Examples:
        generate_public_id() -> "WH3F9A0C17BE"
    """
    return f"WH{uuid4().hex[:10].upper()}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
