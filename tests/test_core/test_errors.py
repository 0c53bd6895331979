"""Tests for the error hierarchy."""

import pytest

from hookrelay.errors import (
    DeliveryError,
    HookRelayError,
    NotFoundError,
    PermanentDeliveryError,
    SignatureMismatchError,
    TransientDeliveryError,
    ValidationError,
    classify_status,
)

# ============================================================================
# Exception Hierarchy Tests
# ============================================================================


class TestHookRelayError:
    """Tests for base HookRelayError."""

    def test_basic_creation(self) -> None:
        """Test basic error creation."""
        error = HookRelayError("Test error")

        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.details == {}

    def test_to_dict(self) -> None:
        """Test serialization for logs."""
        error = HookRelayError("Test error", details={"key": "value"})

        assert error.to_dict() == {
            "error_type": "HookRelayError",
            "code": "hookrelay_error",
            "message": "Test error",
            "details": {"key": "value"},
        }


class TestValidationError:
    """Tests for ValidationError."""

    def test_field_in_message(self) -> None:
        """Test field is kept and prefixed."""
        error = ValidationError("url", "must be absolute")

        assert error.field == "url"
        assert str(error) == "url: must be absolute"
        assert error.to_dict()["field"] == "url"
        assert isinstance(error, HookRelayError)


class TestNotFoundError:
    """Tests for NotFoundError."""

    def test_attributes(self) -> None:
        """Test resource type and id."""
        error = NotFoundError("endpoint", "wh_1")

        assert str(error) == "endpoint not found: wh_1"
        assert error.to_dict()["resource_id"] == "wh_1"


class TestDeliveryErrors:
    """Tests for delivery errors."""

    def test_kinds(self) -> None:
        """Test transient and permanent flavours."""
        assert TransientDeliveryError("x").error_type == "transient"
        assert PermanentDeliveryError("x").error_type == "permanent"
        assert issubclass(PermanentDeliveryError, DeliveryError)
        assert not issubclass(SignatureMismatchError, DeliveryError)

    def test_to_dict_has_status(self) -> None:
        """Test status code in serialized form."""
        data = PermanentDeliveryError("HTTP 404", status_code=404).to_dict()

        assert data["status_code"] == 404
        assert data["error_kind"] == "permanent"


# ============================================================================
# classify_status Tests
# ============================================================================


class TestClassifyStatus:
    """Tests for classify_status."""

    @pytest.mark.parametrize("status", [200, 201, 202, 204, 299])
    def test_success(self, status: int) -> None:
        """Test 2xx is not an error."""
        assert classify_status(status) is None

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient(self, status: int) -> None:
        """Test 5xx and 429 are transient."""
        error = classify_status(status)

        assert isinstance(error, TransientDeliveryError)
        assert error.status_code == status

    @pytest.mark.parametrize("status", [301, 400, 401, 403, 404, 422])
    def test_permanent(self, status: int) -> None:
        """Test everything else is permanent."""
        assert isinstance(classify_status(status), PermanentDeliveryError)
