"""Error types for the webhook engine.

Exception Hierarchy:
    HookRelayError (base)
    ├── ValidationError - Malformed registry or emit input
    ├── NotFoundError - Unknown endpoint or delivery
    ├── DeliveryError - A single delivery attempt failed
    │   ├── TransientDeliveryError - Network failure, timeout, 5xx, 429
    │   └── PermanentDeliveryError - Any other non-2xx response
    └── SignatureMismatchError - Inbound signature verification failed

Delivery errors never propagate to ``emit`` callers. They are raised by the
sender and recorded on the delivery job by the worker.
"""

from typing import Any


class HookRelayError(Exception):
    """Base exception for all webhook engine errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    code: str = "hookrelay_error"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(HookRelayError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(
        self,
        field: str,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{field}: {message}", details=details)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["field"] = self.field
        return base


class NotFoundError(HookRelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "endpoint", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update(
            {"resource_type": self.resource_type, "resource_id": self.resource_id}
        )
        return base


class DeliveryError(HookRelayError):
    """A delivery attempt did not succeed.

    Attributes:
        status_code: HTTP status returned by the receiver, if any.
    """

    code: str = "delivery_error"
    error_type: str = "transient"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update({"status_code": self.status_code, "error_kind": self.error_type})
        return base


class TransientDeliveryError(DeliveryError):
    """Network failure, timeout, 5xx or 429 response."""

    code: str = "transient_delivery_error"
    error_type: str = "transient"


class PermanentDeliveryError(DeliveryError):
    """4xx response other than 429.

    Still retried under the endpoint's policy; the distinction only shows up
    in the stored ``last_error_type`` so operators can spot broken receivers.
    """

    code: str = "permanent_delivery_error"
    error_type: str = "permanent"


class SignatureMismatchError(HookRelayError):
    """Inbound webhook signature is missing, malformed or does not match."""

    code: str = "signature_mismatch"


def classify_status(status_code: int) -> DeliveryError | None:
    """Map an HTTP status to a delivery error.

    Args:
        status_code: HTTP status code from the receiver.

    Returns:
        None for 2xx, otherwise the matching DeliveryError.
    """
    if 200 <= status_code < 300:
        return None
    if status_code == 429 or status_code >= 500:
        return TransientDeliveryError(f"HTTP {status_code}", status_code=status_code)
    return PermanentDeliveryError(f"HTTP {status_code}", status_code=status_code)
