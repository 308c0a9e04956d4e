"""Per-subscription authentication settings.

Each security method is its own model and the union is discriminated on
``method``, so a subscription cannot be created with a method whose required
fields are missing. The signer switches on the concrete type.
"""

from __future__ import annotations

import re
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SecurityMethod = Literal[
    "none",
    "basic",
    "bearer_token",
    "api_key",
    "hmac_sha256",
    "webhook_secret",
]

# RFC 7230 token characters
_HEADER_NAME_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")

# Visible ASCII, space and tab; anything else cannot go on the wire
_HEADER_VALUE_RE = re.compile(r"[\t\x20-\x7e]*")


def check_header_name(value: str) -> str:
    if not _HEADER_NAME_RE.fullmatch(value):
        raise ValueError(f"invalid header name: {value!r}")
    return value


def check_header_value(value: str) -> str:
    if not _HEADER_VALUE_RE.fullmatch(value):
        raise ValueError("header values must be printable ASCII")
    return value


class NoAuth(BaseModel):
    """No authentication headers."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["none"] = "none"


class BasicAuth(BaseModel):
    """HTTP Basic authentication."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["basic"] = "basic"
    username: str = Field(min_length=1, description="Basic auth user name")
    password: str = Field(min_length=1, description="Basic auth password")

    @field_validator("username")
    @classmethod
    def _no_colon(cls, value: str) -> str:
        if ":" in value:
            raise ValueError("username must not contain ':'")
        return value


class BearerToken(BaseModel):
    """Static bearer token."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["bearer_token"] = "bearer_token"
    token: str = Field(min_length=1, description="Token sent as 'Bearer <token>'")

    @field_validator("token")
    @classmethod
    def _ascii_token(cls, value: str) -> str:
        return check_header_value(value)


class ApiKey(BaseModel):
    """API key in a receiver-chosen header."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["api_key"] = "api_key"
    header_name: str = Field(min_length=1, description="Header carrying the key")
    key: str = Field(min_length=1, description="API key value")

    @field_validator("header_name")
    @classmethod
    def _valid_header_name(cls, value: str) -> str:
        return check_header_name(value)

    @field_validator("key")
    @classmethod
    def _ascii_key(cls, value: str) -> str:
        return check_header_value(value)


class HmacSha256(BaseModel):
    """HMAC-SHA256 over timestamp and body.

    The receiver recomputes ``HMAC_SHA256(secret, X-Timestamp || body)``
    and compares it to ``X-Signature``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["hmac_sha256"] = "hmac_sha256"
    secret: str = Field(min_length=1, description="Shared HMAC secret")


class WebhookSecret(BaseModel):
    """Static shared secret sent verbatim in a header."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Literal["webhook_secret"] = "webhook_secret"
    secret: str = Field(min_length=1, description="Shared secret value")
    header_name: str = Field(default="X-Webhook-Secret", min_length=1)

    @field_validator("header_name")
    @classmethod
    def _valid_header_name(cls, value: str) -> str:
        return check_header_name(value)

    @field_validator("secret")
    @classmethod
    def _ascii_secret(cls, value: str) -> str:
        return check_header_value(value)


SecurityConfig = Annotated[
    NoAuth | BasicAuth | BearerToken | ApiKey | HmacSha256 | WebhookSecret,
    Field(discriminator="method"),
]

# Secret-bearing fields, masked when a subscription is shown to an operator
SECRET_FIELDS: frozenset[str] = frozenset({"password", "token", "key", "secret"})


def masked_security(security: BaseModel) -> dict[str, object]:
    """Return a display copy of a security config with secrets masked.

    Examples:
        >>> masked_security(BearerToken(token="abcdef123456"))
        {'method': 'bearer_token', 'token': '****3456'}
    """
    data = security.model_dump()
    for name in SECRET_FIELDS & data.keys():
        value = str(data[name])
        data[name] = "****" + value[-4:] if len(value) > 8 else "****"
    return data


__all__ = [
    "ApiKey",
    "BasicAuth",
    "BearerToken",
    "HmacSha256",
    "NoAuth",
    "SECRET_FIELDS",
    "SecurityConfig",
    "SecurityMethod",
    "WebhookSecret",
    "check_header_name",
    "check_header_value",
    "masked_security",
]
