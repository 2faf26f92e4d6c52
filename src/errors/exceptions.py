"""Billing Exception Hierarchy.

Typed exceptions for the billing and settlement engine. Each maps to
an error code and an HTTP-style status so callers can tell "nothing
happened" apart from a hard failure.
"""

from typing import Any, Dict, List, Optional

from src.errors.config import ERROR_STATUS_MAP, ErrorCode


class BillingError(Exception):
    """Base exception for all billing engine errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = ERROR_STATUS_MAP.get(error_code, 500)
        self.details = details or []


class ValidationError(BillingError):
    """Raised when caller input fails validation."""

    def __init__(
        self,
        message: str = "Validation failed",
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        field: Optional[str] = None,
    ):
        details = [{"field": field, "issue": message}] if field else None
        super().__init__(message, error_code, details)


class NotFoundError(BillingError):
    """Raised when a referenced entity does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        error_code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        details = []
        if resource_type or resource_id:
            details = [{"resource_type": resource_type, "resource_id": resource_id}]
        super().__init__(message, error_code, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class AlreadyExistsError(BillingError):
    """Raised on a uniqueness violation, e.g. a duplicate invoice."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, ErrorCode.ALREADY_EXISTS)


class ForbiddenError(BillingError):
    """Raised when the principal does not own the resource."""

    def __init__(self, message: str = "Principal does not own this resource"):
        super().__init__(message, ErrorCode.FORBIDDEN)


class InvalidStateError(BillingError):
    """Raised when an operation is not allowed in the entity's current state."""

    def __init__(
        self,
        message: str = "Invalid state for this operation",
        error_code: ErrorCode = ErrorCode.INVALID_STATE,
    ):
        super().__init__(message, error_code)


class AlreadyPaidError(InvalidStateError):
    """Raised when paying an invoice that is already settled."""

    def __init__(self, message: str = "Invoice is already paid"):
        super().__init__(message, ErrorCode.ALREADY_PAID)


class SubscriptionInactiveError(InvalidStateError):
    """Raised when incrementing usage on an inactive subscription."""

    def __init__(self, message: str = "Subscription is not active"):
        super().__init__(message, ErrorCode.SUBSCRIPTION_INACTIVE)


class LedgerInvariantError(InvalidStateError):
    """Raised when a mutation would drive a balance or counter negative."""

    def __init__(
        self,
        message: str = "Ledger invariant violated",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, ErrorCode.LEDGER_INVARIANT)
        if details:
            self.details = [details]


class ConcurrentUpdateError(InvalidStateError):
    """Raised when a row changed between read and write (stale version)."""

    def __init__(
        self,
        message: str = "Row was modified by another writer",
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        super().__init__(message, ErrorCode.CONCURRENT_UPDATE)
        if resource_type or resource_id:
            self.details = [{"resource_type": resource_type, "resource_id": resource_id}]


class NegativeConsumptionError(BillingError):
    """Raised when current reading is below the previous reading."""

    def __init__(
        self,
        message: str = "Consumption is negative",
        meter_id: Optional[str] = None,
        previous_reading: Any = None,
        current_reading: Any = None,
    ):
        details = []
        if meter_id is not None:
            details = [{
                "meter_id": meter_id,
                "previous_reading": str(previous_reading),
                "current_reading": str(current_reading),
            }]
        super().__init__(message, ErrorCode.NEGATIVE_CONSUMPTION, details)


class GatewayError(BillingError):
    """Raised when the payment gateway rejects or fails a request."""

    def __init__(self, message: str = "Payment gateway error"):
        super().__init__(message, ErrorCode.GATEWAY_ERROR)
