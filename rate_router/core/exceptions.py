"""
Rate Router Exception Hierarchy

Structured exception classes for the order routing pipeline.
All exceptions include code, message, and details for audit trail and debugging.

Exception Hierarchy:
    RateRouterError
    ├── ProviderError
    │   └── ProviderTimeout
    ├── OrderFetchFailure
    ├── NoQuotesAvailable
    └── LedgerWriteConflict

A duplicate decision for an order is not an error: the ledger reports it as
LedgerWriteResult.ALREADY_EXISTS.
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class RateRouterError(Exception):
    """
    Base exception for all Rate Router errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "RATE_ROUTER_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# RATE PROVIDER ERRORS
# =============================================================================

class ProviderError(RateRouterError):
    """A rate provider returned an error or an unreadable body."""
    default_code = "PROVIDER_ERROR"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "provider": provider,
            "status_code": status_code,
        })
        self.provider = provider
        super().__init__(message, details=details, **kwargs)


class ProviderTimeout(ProviderError):
    """A rate provider did not answer within its timeout."""
    default_code = "PROVIDER_TIMEOUT"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["timeout_seconds"] = timeout_seconds
        super().__init__(message, provider=provider, details=details, **kwargs)


class NoQuotesAvailable(RateRouterError):
    """Every provider failed and no fallback covered any carrier."""
    default_code = "NO_QUOTES_AVAILABLE"
    default_severity = "P1"

    def __init__(self, message: str, errors: Optional[List[ProviderError]] = None, **kwargs):
        self.errors = list(errors or [])
        details = kwargs.pop("details", {})
        details["errors"] = [e.to_dict() for e in self.errors]
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# ORDER PLATFORM ERRORS
# =============================================================================

class OrderFetchFailure(RateRouterError):
    """Order detail could not be fetched from the order platform."""
    default_code = "ORDER_FETCH_FAILED"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        order_id: Optional[str] = None,
        transient: bool = True,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "order_id": order_id,
            "transient": transient,
            "status_code": status_code,
        })
        self.order_id = order_id
        self.transient = transient
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class LedgerWriteConflict(RateRouterError):
    """Two writers raced on the same order id; the unique key kept one."""
    default_code = "LEDGER_WRITE_CONFLICT"
    default_severity = "P3"

    def __init__(self, message: str, order_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["order_id"] = order_id
        self.order_id = order_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# EXCEPTION CATALOG (for documentation/alerting)
# =============================================================================

EXCEPTION_CATALOG = {
    "PROVIDER_ERROR": {
        "class": ProviderError,
        "severity": "P2",
        "description": "Rate provider returned an error or malformed body",
        "action": "Fallback quote substituted; check provider credentials if persistent",
    },
    "PROVIDER_TIMEOUT": {
        "class": ProviderTimeout,
        "severity": "P2",
        "description": "Rate provider exceeded its timeout",
        "action": "Fallback quote substituted; check provider status page",
    },
    "NO_QUOTES_AVAILABLE": {
        "class": NoQuotesAvailable,
        "severity": "P1",
        "description": "No provider or fallback produced a quote",
        "action": "no_quotes decision recorded; route the order manually",
    },
    "ORDER_FETCH_FAILED": {
        "class": OrderFetchFailure,
        "severity": "P1",
        "description": "Order detail could not be fetched after retries",
        "action": "Order abandoned; reconcile orders without a decision record",
    },
    "LEDGER_WRITE_CONFLICT": {
        "class": LedgerWriteConflict,
        "severity": "P3",
        "description": "Concurrent decision write for the same order",
        "action": "None; the first write wins",
    },
}
