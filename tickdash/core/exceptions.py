"""Exception hierarchy for the dashboard engine.

All custom exceptions inherit from TickdashError for easy catching and
handling. Fetch-path errors are absorbed per ticker by the acquisition
scheduler; configuration errors are raised at the point a setting changes.
"""

from typing import Any, Dict


class TickdashError(Exception):
    """Base exception for all engine errors.

    Carries optional keyword context that is appended to the string form,
    so log lines show which ticker or timeframe was involved.
    """

    def __init__(self, message: str, **context: Any):
        """Initialize the exception with a message and optional context.

        Args:
            message: Error message describing what went wrong
            **context: Additional context information for logging and debugging
        """
        super().__init__(message)
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        """Return string representation including context."""
        if self.context:
            ctx = ', '.join(f'{k}={v}' for k, v in self.context.items())
            return f"{super().__str__()} [{ctx}]"
        return super().__str__()


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationError(TickdashError):
    """Raised when a configuration change is rejected.

    The previous valid configuration (for example the Kagi state built from
    it) stays in effect.
    """


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value fails validation.

    Examples are a non-positive Kagi reversal value or an unknown timeframe
    label in the config file.
    """


class MissingConfigError(ConfigurationError):
    """Raised when a configuration file that was explicitly requested is missing."""


# ============================================================================
# Fetch Exceptions
# ============================================================================

class FetchError(TickdashError):
    """Base class for errors raised by the market-data fetch operation."""


class NetworkError(FetchError):
    """Raised on connection failures, resets and unexpected HTTP statuses."""


class FetchTimeoutError(NetworkError):
    """Raised when a fetch exceeds its timeout.

    Handled exactly like any other network failure.
    """


class RateLimitedError(FetchError):
    """Raised when the source answers with a rate-limit response.

    Retried like a network failure, with a faster-growing backoff.
    """


class MalformedResponseError(FetchError):
    """Raised when a response body cannot be decoded into price bars.

    The whole batch is discarded; nothing from it is merged.
    """


class NotFoundError(FetchError):
    """Raised when the source does not know the symbol (or it was delisted).

    The ticker is marked permanently stale and polled at a reduced rate.
    """


# ============================================================================
# Data Exceptions
# ============================================================================

class DataError(TickdashError):
    """Base class for data integrity errors."""


class InvalidBarError(DataError):
    """Raised when a price bar violates OHLC integrity."""
