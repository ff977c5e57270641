"""
Custom Error Types for the Legend Takeoff Pipeline

Provides categorized exceptions to distinguish between critical errors
that should stop a run and non-critical errors that are recorded as
diagnostics while the run continues.
"""

import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class TakeoffError(Exception):
    """Base exception for all takeoff pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class CriticalError(TakeoffError):
    """
    Critical errors that should stop processing.

    Examples:
    - Plan image not found or not decodable
    - Invalid pipeline configuration
    """
    pass


class NonCriticalError(TakeoffError):
    """
    Non-critical errors that are logged and collected but never abort a run.

    Examples:
    - OCR failed on one plan region
    - Vision-language classification failed for one swatch
    """
    pass


class PlanLoadError(CriticalError):
    """The input plan could not be read or decoded."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Could not load plan image '{path}': {reason}",
            {'path': path, 'reason': reason}
        )
        self.path = path


class ConfigurationError(CriticalError):
    """
    Configuration errors that prevent proper operation.

    Examples:
    - Similarity weights that do not sum to 1.0
    - Unknown legend corner
    - Missing API key for the vision-language service
    """
    pass


class OCRError(NonCriticalError):
    """Text recognition failed for a single region."""
    pass


class ClassificationError(NonCriticalError):
    """The vision-language service could not classify a swatch."""
    pass


class ServiceTimeoutError(NonCriticalError):
    """
    An external service call exceeded its timeout on every attempt.

    Treated as recoverable: the caller skips the region or swatch.
    """
    pass


def categorize_exception(e: Exception) -> TakeoffError:
    """
    Categorize a generic exception into appropriate error type.

    Args:
        e: Exception to categorize

    Returns:
        Categorized TakeoffError
    """
    if isinstance(e, TakeoffError):
        return e

    error_message = str(e)
    error_type = type(e).__name__

    # File-related errors
    if error_type in ['FileNotFoundError', 'PermissionError', 'IsADirectoryError']:
        return CriticalError(f"File access error: {error_message}")

    # Timeout errors
    if 'timeout' in error_message.lower() or error_type in ['TimeoutError', 'APITimeoutError']:
        return ServiceTimeoutError(f"Operation timed out: {error_message}")

    # Configuration errors
    if 'api' in error_message.lower() and 'key' in error_message.lower():
        return ConfigurationError(f"API configuration error: {error_message}")

    # Default to non-critical for unknown errors
    return NonCriticalError(f"Unexpected error: {error_message}", {'original_type': error_type})


def log_error_with_context(error: TakeoffError, context: Dict[str, Any]):
    """
    Log error with additional context information.

    Args:
        error: Error to log
        context: Additional context (stage, region, swatch id, etc.)
    """
    log_data = {
        'error_type': type(error).__name__,
        'error_message': error.message,
        'details': error.details,
        'context': context
    }

    if isinstance(error, CriticalError):
        logger.error(f"CRITICAL ERROR: {error.message}", extra=log_data)
    else:
        logger.warning(f"Non-critical error: {error.message}", extra=log_data)
