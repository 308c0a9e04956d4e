"""HookRelay exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HookRelayError for easy catching.

Delivery failures form their own branch under DeliveryError. Each carries a
``retryable`` flag, which is the only thing the retry scheduler looks at;
the classification itself lives in the dispatcher.
"""

from __future__ import annotations


class HookRelayError(Exception):
    """Base exception for all HookRelay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookRelayError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HookRelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(HookRelayError):
    """Storage operation failed.

    Raised when a Qdrant operation fails or would violate an append-only rule.
    """

    code: str = "storage_error"


class ConfigurationError(HookRelayError):
    """Configuration error.

    Raised when required configuration is missing or invalid. For security
    configs this is raised before anything is sent and is never retried.
    """

    code: str = "configuration_error"


class DeliveryError(HookRelayError):
    """A delivery attempt did not succeed.

    Attributes:
        retryable: Whether the scheduler may try again.
        status_code: HTTP status code, if a response was received.
        response_body: Truncated response body, if a response was received.
    """

    code: str = "delivery_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "retryable": self.retryable,
                "status_code": self.status_code,
                "message": self.message,
            }
        }


class NetworkError(DeliveryError):
    """Connection failure or timeout before a response arrived."""

    code: str = "network_error"
    retryable: bool = True


class ClientError(DeliveryError):
    """Receiver rejected the request with a 4xx other than 429.

    Terminal. The response body is preserved for debugging.
    """

    code: str = "client_error"
    retryable: bool = False


class RateLimited(DeliveryError):
    """Receiver answered 429.

    Attributes:
        retry_after: Seconds the receiver asked us to wait, if it said.
    """

    code: str = "rate_limited"
    retryable: bool = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        response_body: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, response_body=response_body)


class ServerError(DeliveryError):
    """Receiver answered 5xx."""

    code: str = "server_error"
    retryable: bool = True


class ExhaustedRetries(DeliveryError):
    """Every allowed attempt failed.

    Terminal. Surfaced in the failed-deliveries view.
    """

    code: str = "exhausted_retries"
    retryable: bool = False


class AuthenticationError(HookRelayError):
    """Authentication failed on the admin API."""

    code: str = "authentication_error"
