"""Request signing for outbound webhooks.

``sign_request`` is a pure function of the security config, the exact body
bytes and a timestamp. It never looks at shared state, so the same inputs
always give the same headers.

Receiver contract for ``hmac_sha256`` subscriptions:
    1. Read ``X-Timestamp`` (unix seconds) and ``X-Signature`` (hex).
    2. Reject if the timestamp is outside your freshness window.
    3. Compute ``HMAC_SHA256(secret, X-Timestamp + raw_body)`` and compare in
       constant time.
    4. Answer 2xx on success, 429 with ``Retry-After`` to ask for backoff.

``verify_signature`` implements steps 2 and 3.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import assert_never

from hookrelay.exceptions import ConfigurationError
from hookrelay.models.security import (
    ApiKey,
    BasicAuth,
    BearerToken,
    HmacSha256,
    NoAuth,
    WebhookSecret,
)

TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_HEADER = "X-Signature"

SecuritySettings = NoAuth | BasicAuth | BearerToken | ApiKey | HmacSha256 | WebhookSecret


def _require(value: str, method: str, field: str) -> str:
    """Return value, or fail closed if it is empty."""
    if not value:
        raise ConfigurationError(f"{method} security config is missing '{field}'")
    return value


def compute_signature(secret: str, timestamp: int | str, body: bytes) -> str:
    """Compute the HMAC-SHA256 signature of timestamp followed by body.

    Args:
        secret: Shared secret for HMAC.
        timestamp: Unix timestamp sent in X-Timestamp.
        body: Exact request body bytes.

    Returns:
        Lowercase hex digest.
    """
    message = str(timestamp).encode("utf-8") + body
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(
    secret: str,
    timestamp: int | str,
    body: bytes,
    signature: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """Verify an X-Signature header the way a receiver should.

    Args:
        secret: Shared secret for HMAC.
        timestamp: Value of X-Timestamp.
        body: Raw request body bytes.
        signature: Value of X-Signature.
        tolerance_seconds: Maximum allowed clock distance.
        now: Current unix time. Defaults to time.time().

    Returns:
        True if the timestamp is fresh and the signature matches.
    """
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        return False

    expected = compute_signature(secret, sent_at, body)
    return hmac.compare_digest(expected, signature)


def sign_request(
    security: SecuritySettings,
    body: bytes,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Build authentication headers for one request.

    Args:
        security: Subscription security config.
        body: Exact request body bytes (used by hmac_sha256 only).
        timestamp: Unix seconds for hmac_sha256. Defaults to now.

    Returns:
        Headers to add to the request. Empty for ``none``.

    Raises:
        ConfigurationError: A required config field is empty. Nothing
            should be sent in that case.
    """
    if isinstance(security, NoAuth):
        return {}

    if isinstance(security, BasicAuth):
        username = _require(security.username, "basic", "username")
        password = _require(security.password, "basic", "password")
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        return {"Authorization": f"Basic {credentials}"}

    if isinstance(security, BearerToken):
        token = _require(security.token, "bearer_token", "token")
        return {"Authorization": f"Bearer {token}"}

    if isinstance(security, ApiKey):
        header_name = _require(security.header_name, "api_key", "header_name")
        key = _require(security.key, "api_key", "key")
        return {header_name: key}

    if isinstance(security, HmacSha256):
        secret = _require(security.secret, "hmac_sha256", "secret")
        ts = int(time.time()) if timestamp is None else timestamp
        return {
            TIMESTAMP_HEADER: str(ts),
            SIGNATURE_HEADER: compute_signature(secret, ts, body),
        }

    if isinstance(security, WebhookSecret):
        secret = _require(security.secret, "webhook_secret", "secret")
        header_name = _require(security.header_name, "webhook_secret", "header_name")
        return {header_name: secret}

    assert_never(security)


__all__ = [
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "SecuritySettings",
    "compute_signature",
    "sign_request",
    "verify_signature",
]
