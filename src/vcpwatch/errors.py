"""
VCP Watch - Error Taxonomy

Insufficient analyzer input is not an error: it is reported in the
PatternResult. Everything else raised by this package derives from
VCPWatchError.
"""


class VCPWatchError(Exception):
    """Base class for all VCP Watch errors."""


class NotEligible(VCPWatchError):
    """Monitoring was requested for an instrument without a recorded pattern."""

    def __init__(self, instrument_id: str, reason: str = "no VCP pattern detected"):
        self.instrument_id = instrument_id
        self.reason = reason
        super().__init__(f"Instrument {instrument_id} is not eligible for monitoring: {reason}")


class DataUnavailable(VCPWatchError):
    """The market data source failed or returned no data."""

    def __init__(self, symbol: str, reason: str = "no data"):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"Market data unavailable for {symbol}: {reason}")


class PersistenceFailure(VCPWatchError):
    """A result store read or write failed."""


class NotifyFailure(VCPWatchError):
    """An alert could not be delivered by any channel."""
