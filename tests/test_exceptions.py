"""Tests for the HookRelay exception hierarchy."""

from __future__ import annotations

import pytest

from hookrelay.exceptions import (
    AuthenticationError,
    ClientError,
    ConfigurationError,
    DeliveryError,
    ExhaustedRetries,
    HookRelayError,
    NetworkError,
    NotFoundError,
    RateLimited,
    ServerError,
    StorageError,
    ValidationError,
)


class TestHookRelayError:
    def test_message_and_code(self):
        error = HookRelayError("something broke")
        assert str(error) == "something broke"
        assert error.message == "something broke"
        assert error.code == "hookrelay_error"

    def test_to_dict(self):
        assert HookRelayError("x").to_dict() == {
            "error": {"code": "hookrelay_error", "message": "x"}
        }


class TestValidationError:
    def test_field_and_message(self):
        error = ValidationError("events", "must not be empty")
        assert error.field == "events"
        assert error.message == "events: must not be empty"

    def test_to_dict_includes_field(self):
        data = ValidationError("url", "bad").to_dict()
        assert data["error"]["field"] == "url"
        assert data["error"]["code"] == "validation_error"


class TestNotFoundError:
    def test_resource_info(self):
        error = NotFoundError("subscription", "sub_1")
        assert error.message == "subscription not found: sub_1"
        assert error.to_dict()["error"]["resource_id"] == "sub_1"


class TestDeliveryErrors:
    """The retryable flag is what the scheduler acts on."""

    @pytest.mark.parametrize(
        ("cls", "code", "retryable"),
        [
            (NetworkError, "network_error", True),
            (ServerError, "server_error", True),
            (RateLimited, "rate_limited", True),
            (ClientError, "client_error", False),
            (ExhaustedRetries, "exhausted_retries", False),
        ],
    )
    def test_classification(self, cls, code, retryable):
        error = cls("failed")
        assert isinstance(error, DeliveryError)
        assert error.code == code
        assert error.retryable is retryable

    def test_rate_limited_defaults(self):
        error = RateLimited("slow down", retry_after=30)
        assert error.status_code == 429
        assert error.retry_after == 30

    def test_to_dict(self):
        data = ServerError("boom", status_code=502).to_dict()
        assert data["error"] == {
            "code": "server_error",
            "retryable": True,
            "status_code": 502,
            "message": "boom",
        }


class TestExceptionCatching:
    def test_catch_all(self):
        for error in (
            StorageError("x"),
            ConfigurationError("x"),
            AuthenticationError("x"),
            ClientError("x", 400),
        ):
            with pytest.raises(HookRelayError):
                raise error

    def test_configuration_error_is_not_a_delivery_error(self):
        assert not isinstance(ConfigurationError("x"), DeliveryError)
