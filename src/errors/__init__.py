"""Billing Error Handling.

Provides the error taxonomy of the billing engine, the code/status
tables, and the structured error envelope returned to callers.
"""

from src.errors.config import (
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from src.errors.exceptions import (
    AlreadyExistsError,
    AlreadyPaidError,
    BillingError,
    ConcurrentUpdateError,
    ForbiddenError,
    GatewayError,
    InvalidStateError,
    LedgerInvariantError,
    NegativeConsumptionError,
    NotFoundError,
    SubscriptionInactiveError,
    ValidationError,
)
from src.errors.handlers import (
    RETRYABLE_CODES,
    ErrorResponse,
    create_error_response,
    handle_billing_error,
    handle_timeout,
    handle_unhandled_error,
    to_error_response,
)

__all__ = [
    # Config
    "ErrorCode",
    "ErrorConfig",
    "ErrorSeverity",
    # Exceptions
    "AlreadyExistsError",
    "AlreadyPaidError",
    "BillingError",
    "ConcurrentUpdateError",
    "ForbiddenError",
    "GatewayError",
    "InvalidStateError",
    "LedgerInvariantError",
    "NegativeConsumptionError",
    "NotFoundError",
    "SubscriptionInactiveError",
    "ValidationError",
    # Handlers
    "ErrorResponse",
    "create_error_response",
    "RETRYABLE_CODES",
    "handle_billing_error",
    "handle_timeout",
    "handle_unhandled_error",
    "to_error_response",
]
