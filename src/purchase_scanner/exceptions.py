"""Custom exceptions for Purchase Scanner."""


class PurchaseScannerError(Exception):
    """Base exception for all Purchase Scanner errors."""


class GmailAPIError(PurchaseScannerError):
    """Exception raised for Gmail API related errors."""


class ConfigurationError(PurchaseScannerError):
    """Exception raised for configuration related errors."""


class AuthenticationError(PurchaseScannerError):
    """Exception raised for authentication failures."""


class ReductionError(PurchaseScannerError):
    """Exception raised when HTML reduction fails internally."""


class ExtractionError(PurchaseScannerError):
    """Base exception for oracle extraction failures."""


class ExtractionTransientError(ExtractionError):
    """Exception raised for retryable oracle failures (network, timeout, 5xx)."""


class OracleRateLimitError(ExtractionTransientError):
    """Exception raised when the oracle rejects a call because of rate limiting."""


class OracleRequestError(ExtractionError):
    """Exception raised for oracle failures that retrying will not fix."""


class ExtractionDecodeError(ExtractionError):
    """Exception raised when the oracle response is not a usable JSON object."""


class PersistenceError(PurchaseScannerError):
    """Exception raised when a purchase record cannot be stored."""
