"""Error taxonomy shared by the parser, resolver, adapters and orchestrator.

Hierarchy:
    TradingError
        ParseError              malformed command text, no exchange call made
        SymbolResolutionError   no tradable symbol for the requested product type
        ExchangeError           anything the exchange (or the wire) rejected
            AuthenticationError invalid or missing credentials
            RateLimitError      request budget exhausted (retryable by caller)
            ValidationError     generic parameter / business rejection
                ModeConflictError   position-mode or margin-mode conflict
            NetworkError        timeout, connectivity, unparseable response

Only ModeConflictError has an automatic recovery path (hedged-mode fallback).
"""
from typing import Optional


class TradingError(Exception):
    """Base class for every error raised by this package."""


class ParseError(TradingError):
    """Raised when command text cannot be turned into a TradingIntent."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SymbolResolutionError(TradingError):
    """Raised when no tradable symbol of the requested product type exists."""


class ExchangeError(TradingError):
    """Base class for exchange-side failures.

    Attributes:
        code: Exchange error code (Bitget uses strings like "40774"), if any
        endpoint: Request path that failed, if known
    """

    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, endpoint: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.endpoint = endpoint


class AuthenticationError(ExchangeError):
    pass


class RateLimitError(ExchangeError):
    """Raised when the request budget is exhausted; the caller decides whether to retry."""

    retryable = True


class ValidationError(ExchangeError):
    pass


class ModeConflictError(ValidationError):
    """The account's position mode does not permit this (unilateral) request."""


class NetworkError(ExchangeError):
    """Timeout or connectivity failure; never retried automatically."""

    retryable = True
