"""
Error taxonomy and logging utilities for the external roster integration.
"""

import logging
import traceback
from datetime import datetime
from typing import Dict, Any, List, Optional, Union


# Configure roster-specific logger
roster_logger = logging.getLogger('roster_integration')


class RosterErrorSeverity:
    """Error severity levels for roster operations."""
    LOW = "low"           # Minor issues, sync continues
    MEDIUM = "medium"     # Significant issues, a sync attempt failed
    HIGH = "high"         # Roster unusable until configuration changes


class RosterErrorCategory:
    """Error categories for better classification."""
    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    RATE_LIMITING = "rate_limiting"
    NETWORK = "network"
    UNKNOWN = "unknown"


class RosterError(Exception):
    """Base exception for roster errors; used as-is for the unknown category."""

    category = RosterErrorCategory.UNKNOWN
    severity = RosterErrorSeverity.MEDIUM
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.operation = operation
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/storage."""
        return {
            'message': self.message,
            'category': self.category,
            'severity': self.severity,
            'status_code': self.status_code,
            'operation': self.operation,
            'details': self.details,
            'retryable': self.retryable,
            'timestamp': self.timestamp.isoformat(),
        }


class RosterNotFoundError(RosterError):
    """Spreadsheet or range does not exist."""
    category = RosterErrorCategory.NOT_FOUND
    severity = RosterErrorSeverity.HIGH
    retryable = False


class RosterAuthError(RosterError):
    """Credentials rejected by the roster API."""
    category = RosterErrorCategory.AUTHENTICATION
    severity = RosterErrorSeverity.HIGH
    retryable = False


class RosterRateLimitError(RosterError):
    """Rate limiting errors."""
    category = RosterErrorCategory.RATE_LIMITING
    severity = RosterErrorSeverity.LOW

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        details = kwargs.pop('details', None) or {}
        details['retry_after'] = retry_after
        super().__init__(message, details=details, **kwargs)
        self.retry_after = retry_after


class RosterNetworkError(RosterError):
    """Connection failures and timeouts."""
    category = RosterErrorCategory.NETWORK


def error_for_status(status_code: int, message: str, **kwargs) -> RosterError:
    """Map an HTTP status from the roster API onto the error taxonomy."""
    if status_code == 404:
        return RosterNotFoundError(message, status_code=status_code, **kwargs)
    if status_code in (401, 403):
        return RosterAuthError(message, status_code=status_code, **kwargs)
    if status_code == 429:
        return RosterRateLimitError(message, status_code=status_code, **kwargs)
    return RosterError(message, status_code=status_code, **kwargs)


def is_non_retryable(error: Exception) -> bool:
    """True for roster errors a retry cannot fix (auth, not found)."""
    return isinstance(error, RosterError) and not error.retryable


class RosterErrorHandler:
    """Keeps a bounded log of recent roster errors for status reporting."""

    def __init__(self, max_log_entries: int = 200):
        self._error_log: List[Dict[str, Any]] = []
        self._max_log_entries = max_log_entries

    def log_error(
        self,
        error: Union[RosterError, Exception],
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log an error with full context.

        Args:
            error: The error to log
            context: Additional context information
        """
        if isinstance(error, RosterError):
            error_dict = error.to_dict()
        else:
            error_dict = {
                'message': str(error),
                'category': RosterErrorCategory.UNKNOWN,
                'severity': RosterErrorSeverity.MEDIUM,
                'timestamp': datetime.utcnow().isoformat(),
                'traceback': traceback.format_exc()
            }

        if context:
            error_dict.update(context)

        severity = error_dict.get('severity', RosterErrorSeverity.MEDIUM)
        log_message = f"Roster Error [{severity.upper()}]: {error_dict['message']}"

        if severity == RosterErrorSeverity.HIGH:
            roster_logger.error(log_message)
        elif severity == RosterErrorSeverity.MEDIUM:
            roster_logger.warning(log_message)
        else:
            roster_logger.info(log_message)

        self._error_log.append(error_dict)
        if len(self._error_log) > self._max_log_entries:
            self._error_log.pop(0)

    def get_recent_errors(
        self,
        limit: int = 20,
        category_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get recent errors with optional filtering."""
        errors = list(self._error_log)
        if category_filter:
            errors = [e for e in errors if e.get('category') == category_filter]
        return errors[-limit:]
