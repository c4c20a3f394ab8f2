"""Exceptions raised by the storefront services.

Every error carries the HTTP status and the machine-readable code that the
API returns in its ``{"success": false, ...}`` envelope.
"""

from fastapi import status


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL"

    def __init__(self, message: str = "Internal server error", code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationFailed(StoreError):
    """Raised when a required field is missing or out of range."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION"


class NotFound(StoreError):
    """Raised when a record is absent or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"{what} not found")


class AuthenticationRequired(StoreError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTH"


class Forbidden(StoreError):
    """Raised for invalid or expired credentials and insufficient roles."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class Conflict(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "CONFLICT"


class EmptyCart(Conflict):
    code = "EMPTY_CART"

    def __init__(self):
        super().__init__("Cart is empty. Please add items to cart before creating order.")


class InvalidStage(ValidationFailed):
    code = "INVALID_STAGE"

    def __init__(self, stage: str, valid: list[str]):
        self.stage = stage
        super().__init__(f"Invalid stage {stage!r}. Valid stages: {', '.join(valid)}")


class StageRegression(Conflict):
    """Raised when a shipment update would not move the order forward."""

    code = "ALREADY_AT_OR_PAST_STAGE"

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Order is already at or past {stage} stage")


class InvalidSignature(StoreError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_SIGNATURE"

    def __init__(self):
        super().__init__("Invalid payment signature")


class GatewayError(StoreError):
    """Raised when the payment gateway call fails."""

    code = "EXTERNAL"
