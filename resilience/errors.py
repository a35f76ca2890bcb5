"""Module errors: structured error taxonomy for the resilience engine."""
#
# PURPOSE:
# Error codes and typed exceptions shared by the ledger, policy engine,
# adaptive activator and performance monitor.
#
# ERROR CODE FORMAT:
# - LEDGER_XXX: Allocation / deployment / recovery denials
# - POLICY_XXX: Policy evaluation and action failures
# - ALERT_XXX: Alert lookup / lifecycle errors
# - CONFIG_XXX: Configuration errors (fatal at startup)
# - SYSTEM_XXX: Unexpected internal failures
#
# Ledger denials are NOT raised across the ledger boundary. They travel back
# inside a LedgerOutcome so callers can branch on `outcome.error.code`.
#
# USAGE:
#   from resilience.errors import ResilienceError, ErrorCode
#
#   raise ConfigurationError(
#       "monitoring_interval must be positive",
#       details={"monitoring_interval": 0}
#   )
#

from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(Enum):
    # Ledger Errors
    INSUFFICIENT_RESOURCE = "LEDGER_001"
    POOL_NOT_FOUND = "LEDGER_002"
    CONCURRENCY_LIMIT_EXCEEDED = "LEDGER_003"
    ALLOCATION_NOT_FOUND = "LEDGER_004"
    QUANTITY_EXCEEDS_ALLOCATION = "LEDGER_005"
    DUPLICATE_REQUEST = "LEDGER_006"
    LEDGER_DISABLED = "LEDGER_007"
    INVALID_QUANTITY = "LEDGER_008"

    # Policy Errors
    POLICY_ACTION_FAILED = "POLICY_001"
    POLICY_NO_MATCHING_POOL = "POLICY_002"
    POLICY_UNKNOWN_ACTION = "POLICY_003"

    # Alert Errors
    ALERT_NOT_FOUND = "ALERT_001"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"
    CONFIG_MISSING_REQUIRED = "CONFIG_002"
    CONFIG_FILE_NOT_FOUND = "CONFIG_003"
    CONFIG_PARSE_ERROR = "CONFIG_004"

    # System Errors
    SYSTEM_INTERNAL_ERROR = "SYSTEM_001"


class ResilienceError(Exception):
    """
    Base exception for the resilience engine with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "LEDGER_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
    """

    default_code: ErrorCode = ErrorCode.SYSTEM_INTERNAL_ERROR

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}

        # Build exception message with code for easy debugging
        super().__init__(f"[{self.code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        import json
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResilienceError":
        """Deserialize error from dictionary (inverse of to_dict)."""
        code = ErrorCode(data["code"])
        error_cls = _ERROR_CLASSES.get(code, ResilienceError)
        # Typed subclasses build their own messages; bypass their __init__
        err = error_cls.__new__(error_cls)
        ResilienceError.__init__(err, code, data["message"], data.get("details", {}))
        return err


# ============================================================================
# Typed Exceptions
# ============================================================================

class ConfigurationError(ResilienceError):
    """Invalid or missing configuration. Fatal at startup."""
    default_code = ErrorCode.CONFIG_INVALID

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 code: ErrorCode = ErrorCode.CONFIG_INVALID):
        super().__init__(code, message, details)


class InsufficientResourceError(ResilienceError):
    default_code = ErrorCode.INSUFFICIENT_RESOURCE

    def __init__(self, pool_id: str, requested: float, available: float):
        super().__init__(
            ErrorCode.INSUFFICIENT_RESOURCE,
            f"Insufficient quantity in pool {pool_id}: requested {requested}, available {available}",
            {"pool_id": pool_id, "requested": requested, "available": available},
        )


class NotFoundError(ResilienceError):
    """Base for lookups that found nothing."""
    default_code = ErrorCode.SYSTEM_INTERNAL_ERROR


class PoolNotFoundError(NotFoundError):
    default_code = ErrorCode.POOL_NOT_FOUND

    def __init__(self, pool_id: str):
        super().__init__(ErrorCode.POOL_NOT_FOUND, f"Pool not found: {pool_id}", {"pool_id": pool_id})


class AllocationNotFoundError(NotFoundError):
    default_code = ErrorCode.ALLOCATION_NOT_FOUND

    def __init__(self, allocation_id: str):
        super().__init__(
            ErrorCode.ALLOCATION_NOT_FOUND,
            f"Allocation not found: {allocation_id}",
            {"allocation_id": allocation_id},
        )


class AlertNotFoundError(NotFoundError):
    default_code = ErrorCode.ALERT_NOT_FOUND

    def __init__(self, alert_id: str):
        super().__init__(ErrorCode.ALERT_NOT_FOUND, f"Alert not found: {alert_id}", {"alert_id": alert_id})


class ConcurrencyLimitError(ResilienceError):
    default_code = ErrorCode.CONCURRENCY_LIMIT_EXCEEDED

    def __init__(self, limit: int):
        super().__init__(
            ErrorCode.CONCURRENCY_LIMIT_EXCEEDED,
            f"Maximum concurrent allocations reached ({limit})",
            {"limit": limit},
        )


class QuantityExceedsAllocationError(ResilienceError):
    default_code = ErrorCode.QUANTITY_EXCEEDS_ALLOCATION

    def __init__(self, allocation_id: str, requested: float, remaining: float):
        super().__init__(
            ErrorCode.QUANTITY_EXCEEDS_ALLOCATION,
            f"Deployment of {requested} exceeds remaining {remaining} on allocation {allocation_id}",
            {"allocation_id": allocation_id, "requested": requested, "remaining": remaining},
        )


class DuplicateRequestError(ResilienceError):
    default_code = ErrorCode.DUPLICATE_REQUEST

    def __init__(self, request_id: str):
        super().__init__(
            ErrorCode.DUPLICATE_REQUEST,
            f"A live allocation already exists for request {request_id}",
            {"request_id": request_id},
        )


_ERROR_CLASSES: Dict[ErrorCode, type] = {
    ErrorCode.INSUFFICIENT_RESOURCE: InsufficientResourceError,
    ErrorCode.POOL_NOT_FOUND: PoolNotFoundError,
    ErrorCode.CONCURRENCY_LIMIT_EXCEEDED: ConcurrencyLimitError,
    ErrorCode.ALLOCATION_NOT_FOUND: AllocationNotFoundError,
    ErrorCode.QUANTITY_EXCEEDS_ALLOCATION: QuantityExceedsAllocationError,
    ErrorCode.DUPLICATE_REQUEST: DuplicateRequestError,
    ErrorCode.ALERT_NOT_FOUND: AlertNotFoundError,
    ErrorCode.CONFIG_INVALID: ConfigurationError,
    ErrorCode.CONFIG_MISSING_REQUIRED: ConfigurationError,
    ErrorCode.CONFIG_FILE_NOT_FOUND: ConfigurationError,
    ErrorCode.CONFIG_PARSE_ERROR: ConfigurationError,
}


# ============================================================================
# Convenience Functions
# ============================================================================

def handle_error(
    error: Exception,
    context: Optional[str] = None,
    code: ErrorCode = ErrorCode.SYSTEM_INTERNAL_ERROR,
) -> ResilienceError:
    """
    Convert a generic exception to a ResilienceError.

    Used by the policy engine and activator to record a failed action without
    letting it escape.
    """
    if isinstance(error, ResilienceError):
        return error

    error_type = type(error).__name__
    message = str(error)
    if context:
        message = f"{context}: {message}"

    return ResilienceError(
        code,
        message,
        details={
            "original_type": error_type,
            "original_message": str(error),
        },
    )


__all__ = [
    "ErrorCode",
    "ResilienceError",
    "ConfigurationError",
    "InsufficientResourceError",
    "NotFoundError",
    "PoolNotFoundError",
    "AllocationNotFoundError",
    "AlertNotFoundError",
    "ConcurrencyLimitError",
    "QuantityExceedsAllocationError",
    "DuplicateRequestError",
    "handle_error",
]
