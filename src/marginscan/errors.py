"""Custom exception types for the margin opportunity scanner."""


class MarginScanError(Exception):
    """Base exception for all recoverable scanner errors."""


class ConfigurationError(MarginScanError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(MarginScanError):
    """Raised when deal source credentials are unavailable."""


class EmptyInputError(MarginScanError, ValueError):
    """Raised when a statistic is requested over zero samples."""


class DataFetchError(MarginScanError):
    """Raised when the deal source is unavailable or returns an unexpected response."""


class MalformedRecordError(MarginScanError):
    """Raised when a deal record lacks the fields needed for classification."""


class ScanStateError(MarginScanError):
    """Raised when a scan job is asked to make an illegal lifecycle transition."""
