"""
Exception hierarchy for the peg arbitrage bot.

Configuration errors are fatal at startup. Everything else is raised at a
seam where the caller logs it and carries on with the next polling cycle.
"""

from typing import Any, Dict, Optional


class PegArbitrageError(Exception):
    """Base exception for all peg arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(PegArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class MissingAddressError(ConfigurationError):
    """Raised when a required contract or token address is not configured."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.field = field


class PoolMismatchError(ConfigurationError):
    """Raised when a live pool reports a coin that differs from the configured token."""

    def __init__(
        self,
        message: str,
        pool: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool = pool
        self.expected = expected
        self.actual = actual
        self.index = index


class UnknownTokenInPoolError(PegArbitrageError):
    """Raised when a quote names a token that the pool does not hold."""

    def __init__(
        self,
        message: str,
        pool: Optional[str] = None,
        token: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool = pool
        self.token = token


class AmountPrecisionError(PegArbitrageError):
    """Raised when a decimal value carries more fractional digits than the token allows."""

    def __init__(
        self,
        message: str,
        value: Optional[Any] = None,
        decimals: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.value = value
        self.decimals = decimals


class QuoteError(PegArbitrageError):
    """Raised when a pool quote cannot be obtained."""

    def __init__(
        self,
        message: str,
        pool: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool = pool
        self.reason = reason


class OracleError(PegArbitrageError):
    """Raised when an oracle reading cannot be obtained."""

    def __init__(
        self,
        message: str,
        oracle: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.oracle = oracle
        self.reason = reason


class SimulationError(PegArbitrageError):
    """Raised when any hop of a path simulation fails."""

    def __init__(
        self,
        message: str,
        hop: Optional[str] = None,
        scenario: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.hop = hop
        self.scenario = scenario


class ExecutionError(PegArbitrageError):
    """Raised when an execution attempt cannot progress past a stage."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.stage = stage


class NetworkError(PegArbitrageError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
