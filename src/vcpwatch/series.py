"""
VCP Watch - Price Series Helpers

A series is handled internally as the usual OHLCV DataFrame
(columns: Open, High, Low, Close, Volume) indexed by timestamp.
"""

from typing import Iterable, List, Union

import pandas as pd

from .models import PricePoint


PRICE_COLUMNS = ["Open", "High", "Low", "Close", "Volume"]

SeriesLike = Union[pd.DataFrame, Iterable[PricePoint]]


def to_frame(series: SeriesLike) -> pd.DataFrame:
    """
    Normalize a series into a chronologically sorted OHLCV DataFrame.

    Args:
        series: DataFrame with OHLCV columns, or an iterable of PricePoint

    Returns:
        New DataFrame sorted ascending by timestamp (stable for ties)

    Raises:
        ValueError: If a DataFrame is missing OHLCV columns
    """
    if isinstance(series, pd.DataFrame):
        df = series
        if isinstance(df.columns, pd.MultiIndex):
            df = df.copy()
            df.columns = df.columns.get_level_values(0)
        missing = [c for c in PRICE_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Series is missing columns: {', '.join(missing)}")
        df = df[PRICE_COLUMNS].astype(float)
    else:
        points = list(series)
        df = pd.DataFrame(
            {
                "Open": [p.open for p in points],
                "High": [p.high for p in points],
                "Low": [p.low for p in points],
                "Close": [p.close for p in points],
                "Volume": [p.volume for p in points],
            },
            index=pd.DatetimeIndex([p.timestamp for p in points]),
            dtype=float,
        )

    return df.sort_index(kind="mergesort")


def from_frame(df: pd.DataFrame) -> List[PricePoint]:
    """Convert an OHLCV DataFrame into a list of PricePoint."""
    points = []
    for timestamp, row in to_frame(df).iterrows():
        if isinstance(timestamp, pd.Timestamp):
            timestamp = timestamp.to_pydatetime()
        points.append(PricePoint(
            timestamp=timestamp,
            open=float(row["Open"]),
            high=float(row["High"]),
            low=float(row["Low"]),
            close=float(row["Close"]),
            volume=float(row["Volume"]),
        ))
    return points
