"""Error Configuration.

Defines error codes, severity levels, and configuration for
structured error handling across the billing engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes for billing operations."""

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_ORDER_ID = "INVALID_ORDER_ID"

    # Authorization errors (403)
    FORBIDDEN = "FORBIDDEN"

    # Not found errors (404)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    METER_NOT_FOUND = "METER_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"

    # Conflict errors (409)
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_STATE = "INVALID_STATE"
    ALREADY_PAID = "ALREADY_PAID"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    LEDGER_INVARIANT = "LEDGER_INVARIANT"
    CONCURRENT_UPDATE = "CONCURRENT_UPDATE"

    # Data integrity (422)
    NEGATIVE_CONSUMPTION = "NEGATIVE_CONSUMPTION"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    TIMEOUT = "TIMEOUT"


class ErrorSeverity(Enum):
    """Severity levels for error logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Map error codes to HTTP status codes
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_PERIOD: 400,
    ErrorCode.INVALID_QUANTITY: 400,
    ErrorCode.INVALID_ORDER_ID: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.INVOICE_NOT_FOUND: 404,
    ErrorCode.METER_NOT_FOUND: 404,
    ErrorCode.SUBSCRIPTION_NOT_FOUND: 404,
    ErrorCode.WALLET_NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.ALREADY_PAID: 409,
    ErrorCode.SUBSCRIPTION_INACTIVE: 409,
    ErrorCode.LEDGER_INVARIANT: 409,
    ErrorCode.CONCURRENT_UPDATE: 409,
    ErrorCode.NEGATIVE_CONSUMPTION: 422,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.GATEWAY_ERROR: 502,
    ErrorCode.TIMEOUT: 504,
}

# Map error codes to severity
ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.VALIDATION_ERROR: ErrorSeverity.LOW,
    ErrorCode.INVALID_PERIOD: ErrorSeverity.LOW,
    ErrorCode.INVALID_QUANTITY: ErrorSeverity.LOW,
    ErrorCode.INVALID_ORDER_ID: ErrorSeverity.MEDIUM,
    ErrorCode.FORBIDDEN: ErrorSeverity.MEDIUM,
    ErrorCode.RESOURCE_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.INVOICE_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.METER_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.SUBSCRIPTION_NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.WALLET_NOT_FOUND: ErrorSeverity.MEDIUM,
    ErrorCode.ALREADY_EXISTS: ErrorSeverity.LOW,
    ErrorCode.INVALID_STATE: ErrorSeverity.MEDIUM,
    ErrorCode.ALREADY_PAID: ErrorSeverity.LOW,
    ErrorCode.SUBSCRIPTION_INACTIVE: ErrorSeverity.LOW,
    ErrorCode.LEDGER_INVARIANT: ErrorSeverity.CRITICAL,
    ErrorCode.CONCURRENT_UPDATE: ErrorSeverity.LOW,
    ErrorCode.NEGATIVE_CONSUMPTION: ErrorSeverity.HIGH,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.DATABASE_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.GATEWAY_ERROR: ErrorSeverity.HIGH,
    ErrorCode.TIMEOUT: ErrorSeverity.MEDIUM,
}


@dataclass
class ErrorConfig:
    """Configuration for error handling."""

    include_request_id: bool = True
    log_all_errors: bool = True
    max_error_detail_length: int = 1000
    suppress_internal_details: bool = True
    custom_error_messages: Dict[str, str] = field(default_factory=dict)


DEFAULT_ERROR_CONFIG = ErrorConfig()
