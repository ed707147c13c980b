"""
Custom exceptions for the catalog sync pipeline with structured error context.

This module provides the exception hierarchy used throughout the
reconciliation pipeline. Each exception carries context information for
debugging and for the activity log.

Exception Hierarchy:
    SyncException (base)
    ├── RemoteServiceError
    │   ├── NetworkError (retryable)
    │   ├── RateLimitError (retryable)
    │   ├── FatalRequestError
    │   │   └── AuthenticationError
    │   ├── ResourceNotFoundError
    │   └── RequestRejectedError
    │       └── MarketplaceValidationError
    ├── JobFatalError
    │   └── MissingCredentialsError
    ├── ReconciliationSkip
    ├── ReconciliationError
    │   └── UnitTimeoutError
    ├── StoreError
    │   └── ReservationLostError
    ├── ExchangeRateError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all catalog sync errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (supplier id, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Server errors (HTTP 5xx)
    """
    pass


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Rejected payloads (HTTP 400)
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Remote Service Errors
# ============================================================================

class RemoteServiceError(SyncException):
    """
    Base exception for failed calls to the supplier or the marketplace.

    Context should include:
        - url: The endpoint that failed
        - method: HTTP method
        - status_code: HTTP status code (if a response was received)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = None,
        payload: Any = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.payload = payload
        if status_code is not None:
            self.context["status_code"] = status_code


class NetworkError(RetryableError, RemoteServiceError):
    """Transient failures (timeouts, resets, HTTP 5xx) that should be retried."""
    pass


class RateLimitError(RetryableError, RemoteServiceError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = 429,
        payload: Any = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception, status_code, payload)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class FatalRequestError(NonRetryableError, RemoteServiceError):
    """Requests that must never be retried (HTTP 405)."""
    pass


class AuthenticationError(FatalRequestError):
    """Authentication failures (HTTP 401, 403). Fatal for the whole job."""
    pass


class ResourceNotFoundError(NonRetryableError, RemoteServiceError):
    """Resource not found errors (HTTP 404)."""
    pass


class RequestRejectedError(NonRetryableError, RemoteServiceError):
    """Client errors (HTTP 4xx) other than auth, not found and rate limits."""
    pass


class MarketplaceValidationError(RequestRejectedError):
    """
    Marketplace rejected a listing payload (HTTP 400).

    The decoded response body is kept in ``payload`` so the recovery
    layer can inspect the reported causes.
    """

    @property
    def cause_text(self) -> str:
        """Flatten message and causes of the marketplace error body."""
        body = self.payload
        if not isinstance(body, dict):
            return str(body or self.message).lower()

        causes = body.get("cause") or []
        if not isinstance(causes, list):
            causes = [causes]

        parts = [str(body.get("message", "")), str(body.get("error", ""))]
        for cause in causes:
            if isinstance(cause, dict):
                parts.append(str(cause.get("code", "")))
                parts.append(str(cause.get("message", "")))
            else:
                parts.append(str(cause))
        return " ".join(p for p in parts if p).lower()


# ============================================================================
# Job-Level Errors
# ============================================================================

class JobFatalError(NonRetryableError):
    """Errors that abort the entire reconciliation job."""
    pass


class MissingCredentialsError(JobFatalError):
    """
    Raised when supplier or marketplace credentials are not configured.

    Context should include:
        - missing: Names of the missing credentials
    """
    pass


# ============================================================================
# Per-Item Outcomes
# ============================================================================

class ReconciliationSkip(SyncException):
    """
    A unit ended without touching the marketplace listing.

    Attributes:
        reason: Machine-readable skip reason (conflict, recent, not_found,
            invalid, region, fx, price_range, price_outlier,
            not_active, up_to_date, sku_duplicate)
    """

    def __init__(
        self,
        reason: str,
        message: str = "",
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message or reason, context)
        self.reason = reason


class ReconciliationError(SyncException):
    """
    A unit failed after exhausting its recovery options.

    Attributes:
        reason: Machine-readable error reason
    """

    def __init__(
        self,
        reason: str,
        message: str = "",
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message or reason, context, original_exception)
        self.reason = reason


class UnitTimeoutError(ReconciliationError):
    """A unit (or the chunk containing it) ran past its timeout."""

    def __init__(self, timeout: float, context: Optional[Dict[str, Any]] = None):
        super().__init__("timeout", f"Unit exceeded {timeout}s", context)
        self.timeout = timeout


# ============================================================================
# Store Errors
# ============================================================================

class StoreError(SyncException):
    """
    Exception raised when reconciled-record persistence fails.

    Context should include:
        - operation: Store operation (purge, reserve, fence, release,
          promote, load, mark, update, list)
        - supplier_id or record_id: The affected id
    """
    pass


class ReservationLostError(StoreError):
    """
    The processing reservation of a unit disappeared (purged after its TTL)
    before the unit could record its listing.
    """
    pass


class ExchangeRateError(SyncException):
    """No usable exchange rate is configured or stored."""
    pass
