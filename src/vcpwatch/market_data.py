"""
VCP Watch - Market Data Sources

- MarketDataSource protocol: symbol + timeframe -> OHLCV DataFrame
- YFinanceDataSource downloads bars from Yahoo Finance
- InMemoryDataSource serves preloaded frames (tests, replays)
"""

import logging
import threading
from typing import Dict, Optional, Protocol

import pandas as pd
import yfinance as yf

from .errors import DataUnavailable
from .series import PRICE_COLUMNS, to_frame


logger = logging.getLogger(__name__)


class MarketDataSource(Protocol):
    """Protocol for market data providers."""

    def get_series(
        self,
        symbol: str,
        timeframe: str = "1d",
        lookback_days: int = 365,
    ) -> pd.DataFrame:
        """
        Fetch OHLCV bars, oldest first.

        May return an empty frame or raise DataUnavailable.
        """
        ...


# Yahoo has no native 4h bars; they are resampled from hourly data
_YF_INTERVALS = {
    "1m": ("1m", None),
    "5m": ("5m", None),
    "15m": ("15m", None),
    "30m": ("30m", None),
    "1h": ("60m", None),
    "4h": ("60m", "4h"),
    "1d": ("1d", None),
    "1wk": ("1wk", None),
}


class YFinanceDataSource:
    """
    Market data from Yahoo Finance via yfinance.

    Usage:
        source = YFinanceDataSource()
        df = source.get_series("AAPL", timeframe="1d", lookback_days=365)
    """

    def __init__(self, auto_adjust: bool = True):
        self.auto_adjust = auto_adjust

    def get_series(
        self,
        symbol: str,
        timeframe: str = "1d",
        lookback_days: int = 365,
    ) -> pd.DataFrame:
        """Download bars for a symbol."""
        if timeframe not in _YF_INTERVALS:
            raise DataUnavailable(symbol, f"unsupported timeframe {timeframe}")
        interval, resample_rule = _YF_INTERVALS[timeframe]

        try:
            df = yf.download(
                symbol,
                period=f"{lookback_days}d",
                interval=interval,
                progress=False,
                auto_adjust=self.auto_adjust,
            )
        except Exception as e:
            raise DataUnavailable(symbol, str(e)) from e

        if df is None or df.empty:
            return pd.DataFrame(columns=PRICE_COLUMNS)

        if isinstance(df.columns, pd.MultiIndex):
            df.columns = df.columns.get_level_values(0)

        df = to_frame(df.dropna(subset=["Close"]))
        if resample_rule:
            df = resample_bars(df, resample_rule)
        return df


def resample_bars(df: pd.DataFrame, rule: str) -> pd.DataFrame:
    """Aggregate OHLCV bars into a coarser interval."""
    resampled = df.resample(rule).agg({
        "Open": "first",
        "High": "max",
        "Low": "min",
        "Close": "last",
        "Volume": "sum",
    })
    return resampled.dropna(subset=["Close"])


class InMemoryDataSource:
    """
    Serves preloaded frames keyed by symbol (and optionally timeframe).

    Lookback is ignored; the stored frame is returned as-is.
    """

    def __init__(self, frames: Optional[Dict[str, pd.DataFrame]] = None):
        self._frames: Dict[str, pd.DataFrame] = {}
        self._lock = threading.Lock()
        for key, df in (frames or {}).items():
            self.set_series(key, df)

    def set_series(self, symbol: str, df: pd.DataFrame, timeframe: Optional[str] = None) -> None:
        """Store a frame for a symbol, optionally for a single timeframe."""
        key = f"{symbol}:{timeframe}" if timeframe else symbol
        with self._lock:
            self._frames[key] = to_frame(df)

    def remove_series(self, symbol: str) -> None:
        with self._lock:
            for key in [k for k in self._frames if k == symbol or k.startswith(f"{symbol}:")]:
                del self._frames[key]

    def get_series(
        self,
        symbol: str,
        timeframe: str = "1d",
        lookback_days: int = 365,
    ) -> pd.DataFrame:
        """Return the stored frame for the symbol/timeframe."""
        with self._lock:
            df = self._frames.get(f"{symbol}:{timeframe}")
            if df is None:
                df = self._frames.get(symbol)
        if df is None:
            raise DataUnavailable(symbol, "symbol not loaded")
        return df.copy()
