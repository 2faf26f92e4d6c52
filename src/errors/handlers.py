"""Error Handlers & Error Response Builder.

Turns exceptions raised by the lifecycle and settlement services into
the error envelope carried by batch summaries. Besides the code and
status, each envelope says whether retrying the same call can succeed:
lost optimistic-lock races, gateway outages, database hiccups and
per-item timeouts are retryable; validation and state errors are not.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import DBAPIError

from src.errors.config import (
    DEFAULT_ERROR_CONFIG,
    ERROR_SEVERITY_MAP,
    ERROR_STATUS_MAP,
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from src.errors.exceptions import BillingError

logger = logging.getLogger(__name__)

RETRYABLE_CODES: FrozenSet[ErrorCode] = frozenset({
    ErrorCode.CONCURRENT_UPDATE,
    ErrorCode.DATABASE_ERROR,
    ErrorCode.GATEWAY_ERROR,
    ErrorCode.TIMEOUT,
})

_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorResponse:
    """Error envelope for one failed operation or batch item."""

    code: str
    message: str
    status_code: int = 500
    details: List[Dict[str, Any]] = field(default_factory=list)
    request_id: Optional[str] = None
    retryable: bool = False
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.details:
            error["details"] = self.details
        if self.request_id:
            error["request_id"] = self.request_id
        return {"error": error}


def create_error_response(
    error_code: ErrorCode,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
    request_id: Optional[str] = None,
    status_code: Optional[int] = None,
) -> ErrorResponse:
    return ErrorResponse(
        code=error_code.value,
        message=message,
        status_code=status_code or ERROR_STATUS_MAP.get(error_code, 500),
        details=details or [],
        request_id=request_id,
        retryable=error_code in RETRYABLE_CODES,
    )


def _request_id(config: ErrorConfig) -> Optional[str]:
    if not config.include_request_id:
        return None
    from src.logging_config.context import get_request_id
    return get_request_id() or None


def _log(error_code: ErrorCode, message: str, config: ErrorConfig, exc_info=None) -> None:
    if not config.log_all_errors:
        return
    severity = ERROR_SEVERITY_MAP.get(error_code, ErrorSeverity.MEDIUM)
    logger.log(
        _LOG_LEVELS[severity],
        "Billing error [%s]: %s", error_code.value, message,
        exc_info=exc_info,
        extra={"error_code": error_code.value, "severity": severity.value},
    )


def handle_billing_error(exc: BillingError, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    config = config or DEFAULT_ERROR_CONFIG
    _log(exc.error_code, exc.message, config)
    message = config.custom_error_messages.get(exc.error_code.value, exc.message)
    return create_error_response(
        error_code=exc.error_code,
        message=message[: config.max_error_detail_length],
        details=exc.details,
        request_id=_request_id(config),
        status_code=exc.status_code,
    )


def handle_timeout(seconds: Optional[float], config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Envelope for a batch item cancelled by its per-item timeout."""
    config = config or DEFAULT_ERROR_CONFIG
    message = f"Timed out after {seconds}s"
    _log(ErrorCode.TIMEOUT, message, config)
    return create_error_response(ErrorCode.TIMEOUT, message, request_id=_request_id(config))


def handle_unhandled_error(exc: BaseException, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Safe envelope for anything outside the billing taxonomy.

    Driver errors surface as DATABASE_ERROR so callers know a retry may
    succeed; everything else is an INTERNAL_ERROR.
    """
    config = config or DEFAULT_ERROR_CONFIG
    code = ErrorCode.DATABASE_ERROR if isinstance(exc, DBAPIError) else ErrorCode.INTERNAL_ERROR
    _log(code, f"{type(exc).__name__}: {exc}", config,
         exc_info=(type(exc), exc, exc.__traceback__))

    message = "An internal error occurred"
    if not config.suppress_internal_details:
        message = f"{type(exc).__name__}: {exc}"[: config.max_error_detail_length]
    return create_error_response(code, message, request_id=_request_id(config))


def to_error_response(exc: BaseException, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Dispatch to the matching handler for any exception."""
    if isinstance(exc, BillingError):
        return handle_billing_error(exc, config)
    if isinstance(exc, asyncio.TimeoutError):
        return handle_timeout(None, config)
    return handle_unhandled_error(exc, config)
