"""
Exception hierarchy for the FX execution engine.

Every error raised by the engine derives from TradingError so callers can
catch engine failures without catching programming errors.
"""


class TradingError(Exception):
    """Base exception for all engine errors."""
    pass


class InvalidParameters(TradingError, ValueError):
    """
    Raised when risk, stop or target values are invalid.

    Always raised before any persistence, timer or broker side effect,
    so a rejected intent leaves no residue. Not retryable.
    """
    pass


class QuoteUnavailable(TradingError):
    """
    Raised when no usable price exists for an instrument.

    Transient: the caller may retry the whole intent later.
    """
    pass


class SchedulingError(TradingError):
    """Raised when a deferred execution is requested for a non-future instant."""
    pass


class GatewayError(TradingError):
    """
    Raised for broker-side, network or authentication failures.

    In batch execution this is recorded per intent and never aborts
    sibling intents.
    """
    pass


class OrderRejected(GatewayError):
    """
    Raised when the broker refuses an order (e.g. fill-or-kill not filled).

    Attributes:
        reason: Broker-supplied rejection reason
    """

    def __init__(self, reason: str):
        super().__init__(f"Order rejected: {reason}")
        self.reason = reason


class GatewayCredentialError(GatewayError):
    """
    Raised when broker credentials are missing or are placeholder values.

    This indicates a configuration error that must be resolved before the
    gateway can talk to the broker.
    """
    pass


class PersistenceError(TradingError):
    """
    Raised when the task store fails.

    Fatal to the single scheduling, cancel or recovery operation involved;
    it never crashes the process.
    """
    pass


class ConfigError(TradingError):
    """Raised when config.yaml is missing, unreadable or invalid."""
    pass
