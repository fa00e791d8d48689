"""
VCP Watch - Pattern Analyzer

Scores a price series for a Volatility Contraction Pattern.

Indicators combined into the composite score:
- Prior uptrend
- Base (consolidation) detection
- Volatility contraction across 20/10/5 bar lookbacks
- Price tightness and volume dry-up
- Breakout potential relative to recent resistance/support

The analyzer is pure and deterministic: the input is sorted chronologically,
nothing random is involved and short input yields a zero-score result
instead of an error.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .models import (
    Base,
    EntryPoint,
    EntryPointKind,
    PatternResult,
    Trend,
)
from .series import SeriesLike, to_frame


INSUFFICIENT_DATA_DESCRIPTION = "Insufficient data for analysis"
NO_PATTERN_DESCRIPTION = (
    "No VCP pattern detected. Stock does not meet the criteria for "
    "Volatility Contraction Pattern."
)


@dataclass
class AnalyzerConfig:
    """Thresholds and weights for the pattern analyzer."""
    min_points: int = 50              # Below this the series is not analyzed
    window_size: int = 100            # Most recent bars analyzed

    # Uptrend: recent mean close vs. mean close 50..30 bars back
    uptrend_recent_bars: int = 20
    uptrend_older_start: int = 50
    uptrend_older_end: int = 30
    uptrend_min_gain: float = 0.05

    # Bases
    base_half_window: int = 10
    base_max_depth: float = 0.08

    # Volatility contraction
    volatility_periods: Tuple[int, int, int] = (20, 10, 5)  # long, medium, short
    trading_days_per_year: int = 252
    contraction_ratio: float = 0.8
    expansion_ratio: float = 1.2

    # Price tightness
    tightness_bars: int = 10

    # Volume
    volume_bars: int = 20
    dry_up_ratio: float = 0.7
    volume_increase_ratio: float = 1.3

    # Breakout potential and entry points
    breakout_bars: int = 10
    entry_bars: int = 20

    # Composite score
    uptrend_points: float = 20.0
    points_per_base: float = 8.0
    max_base_points: float = 25.0
    contraction_weight: float = 0.4
    max_contraction_points: float = 20.0
    tightness_weight: float = 0.15
    dry_up_points: float = 10.0
    breakout_weight: float = 0.1
    pattern_threshold: float = 60.0


class PatternAnalyzer:
    """
    Converts an OHLCV series into a PatternResult.

    Usage:
        analyzer = PatternAnalyzer()
        result = analyzer.analyze(df)
        if result.has_pattern:
            print(result.description)
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        """
        Initialize the analyzer.

        Args:
            config: Thresholds and weights
        """
        self.config = config or AnalyzerConfig()

    def analyze(self, series: SeriesLike) -> PatternResult:
        """
        Analyze a price series for a VCP pattern.

        Args:
            series: OHLCV DataFrame or iterable of PricePoint, any order

        Returns:
            PatternResult; zero score when fewer than min_points bars
        """
        df = to_frame(series)
        if len(df) < self.config.min_points:
            return self._insufficient_result()

        df = df.tail(self.config.window_size)

        uptrend = self._check_uptrend(df)
        bases = self._find_bases(df)
        contraction_pct, volatility_trend = self._calculate_volatility_contraction(df)
        tightness_pct, tightness_score, tightness_desc = self._calculate_price_tightness(df)
        volume_ratio, volume_dry_up, volume_trend = self._analyze_volume(df)
        breakout_score, breakout_desc = self._assess_breakout_potential(df)
        entry_points = self._find_entry_points(df)

        score = self._calculate_score(
            uptrend=uptrend,
            base_count=len(bases),
            contraction_pct=contraction_pct,
            tightness_score=tightness_score,
            volume_dry_up=volume_dry_up,
            breakout_score=breakout_score,
        )
        has_pattern = score > self.config.pattern_threshold

        description = self._generate_description(
            has_pattern=has_pattern,
            score=score,
            base_count=len(bases),
            contraction_pct=contraction_pct,
            tightness_desc=tightness_desc,
            volume_trend=volume_trend,
            breakout_desc=breakout_desc,
        )

        return PatternResult(
            has_pattern=has_pattern,
            score=score,
            base_count=len(bases),
            volatility_contraction_pct=contraction_pct,
            price_tightness_score=tightness_score,
            volume_dry_up=volume_dry_up,
            breakout_potential_score=breakout_score,
            entry_points=tuple(entry_points),
            description=description,
            uptrend=uptrend,
            bases=tuple(bases),
            volatility_trend=volatility_trend,
            price_tightness_pct=tightness_pct,
            tightness_description=tightness_desc,
            volume_ratio=volume_ratio,
            volume_trend=volume_trend,
            breakout_description=breakout_desc,
        )

    def _insufficient_result(self) -> PatternResult:
        return PatternResult(
            has_pattern=False,
            score=0,
            base_count=0,
            volatility_contraction_pct=0.0,
            price_tightness_score=0.0,
            volume_dry_up=False,
            breakout_potential_score=0.0,
            entry_points=(),
            description=INSUFFICIENT_DATA_DESCRIPTION,
        )

    def _check_uptrend(self, df: pd.DataFrame) -> bool:
        """Check for the prior uptrend a VCP requires."""
        cfg = self.config
        if len(df) < cfg.uptrend_older_start:
            return False

        closes = df["Close"].values
        recent = closes[-cfg.uptrend_recent_bars:]
        older = closes[-cfg.uptrend_older_start:-cfg.uptrend_older_end]

        recent_avg = float(np.mean(recent))
        older_avg = float(np.mean(older))
        return recent_avg >= older_avg * (1 + cfg.uptrend_min_gain)

    def _find_bases(self, df: pd.DataFrame) -> List[Base]:
        """
        Find consolidation windows.

        Slides a window of +/- base_half_window bars across the series; each
        window whose range is tight relative to its mean close is a base.
        Overlapping bases are all kept.
        """
        half = self.config.base_half_window
        highs = df["High"].values
        lows = df["Low"].values
        closes = df["Close"].values
        bases = []

        for i in range(half, len(df) - half):
            window = slice(i - half, i + half)
            avg_price = float(np.mean(closes[window]))
            if avg_price <= 0:
                continue

            depth = float(np.max(highs[window]) - np.min(lows[window])) / avg_price
            if depth < self.config.base_max_depth:
                bases.append(Base(
                    start_index=i - half,
                    end_index=i + half,
                    depth_ratio=depth,
                    duration_bars=2 * half,
                ))

        return bases

    def _annualized_volatility(self, closes: np.ndarray) -> float:
        if len(closes) < 2:
            return 0.0
        previous = closes[:-1]
        if np.any(previous == 0):
            return 0.0
        returns = np.diff(closes) / previous
        return float(np.std(returns) * math.sqrt(self.config.trading_days_per_year))

    def _calculate_volatility_contraction(self, df: pd.DataFrame) -> Tuple[float, Trend]:
        """
        Compare short-term to long-term volatility.

        Returns:
            (contraction %, trend) where contraction is floored at 0
        """
        closes = df["Close"].values
        long_vol, medium_vol, short_vol = (
            self._annualized_volatility(closes[-period:])
            for period in self.config.volatility_periods
        )

        contraction = (1 - short_vol / long_vol) * 100 if long_vol > 0 else 0.0

        trend = Trend.STABLE
        if long_vol > 0:
            if (short_vol <= medium_vol * self.config.contraction_ratio
                    and medium_vol <= long_vol * self.config.contraction_ratio):
                trend = Trend.DECREASING
            elif (short_vol >= medium_vol * self.config.expansion_ratio
                    and medium_vol >= long_vol * self.config.expansion_ratio):
                trend = Trend.INCREASING

        return max(0.0, contraction), trend

    def _calculate_price_tightness(self, df: pd.DataFrame) -> Tuple[float, float, str]:
        """
        Measure how tight the recent range is relative to price.

        Returns:
            (tightness %, banded score, description)
        """
        recent = df.tail(self.config.tightness_bars)
        if len(recent) < 5:
            return 0.0, 0.0, "Insufficient data"

        avg_price = float(recent["Close"].mean())
        if avg_price <= 0:
            return 0.0, 0.0, "Insufficient data"

        price_range = float(recent["High"].max() - recent["Low"].min())
        tightness = (1 - price_range / avg_price) * 100

        if tightness > 85:
            return tightness, 90.0, "Very tight price action"
        elif tightness > 70:
            return tightness, 75.0, "Tight price action"
        elif tightness > 50:
            return tightness, 50.0, "Moderate price action"
        return tightness, 25.0, "Loose price action"

    def _analyze_volume(self, df: pd.DataFrame) -> Tuple[float, bool, Trend]:
        """
        Compare recent volume to the preceding period.

        Returns:
            (volume ratio, dry-up flag, trend)
        """
        bars = self.config.volume_bars
        volumes = df["Volume"].values
        recent = volumes[-bars:]
        older = volumes[-2 * bars:-bars]

        if len(recent) == 0 or len(older) == 0:
            return 0.0, False, Trend.STABLE

        older_avg = float(np.mean(older))
        if older_avg <= 0:
            return 0.0, False, Trend.STABLE

        ratio = float(np.mean(recent)) / older_avg

        trend = Trend.STABLE
        if ratio < self.config.dry_up_ratio:
            trend = Trend.DECREASING
        elif ratio > self.config.volume_increase_ratio:
            trend = Trend.INCREASING

        return ratio, ratio < self.config.dry_up_ratio, trend

    def _assess_breakout_potential(self, df: pd.DataFrame) -> Tuple[float, str]:
        """Score how close price sits to the top of its recent range."""
        recent = df.tail(self.config.breakout_bars)
        if len(recent) < 5:
            return 0.0, "Insufficient data"

        current_price = float(recent["Close"].iloc[-1])
        prior = recent.iloc[:-1]
        resistance = float(prior["High"].max())
        support = float(prior["Low"].min())

        if current_price <= 0:
            return 0.0, "Insufficient data"

        distance_to_resistance = (resistance - current_price) / current_price
        price_range = resistance - support
        position = (current_price - support) / price_range if price_range > 0 else 0.0

        if distance_to_resistance < 0.02 and position > 0.7:
            return 85.0, "Near resistance, high breakout potential"
        elif distance_to_resistance < 0.05 and position > 0.6:
            return 70.0, "Approaching resistance, good breakout potential"
        elif position > 0.5:
            return 50.0, "In upper range, moderate breakout potential"
        return 30.0, "In lower range, low breakout potential"

    def _find_entry_points(self, df: pd.DataFrame) -> List[EntryPoint]:
        """Candidate entries, highest confidence first."""
        recent = df.tail(self.config.entry_bars)
        if len(recent) < 10:
            return []

        current_price = float(recent["Close"].iloc[-1])
        prior = recent.iloc[:-1]
        resistance = float(prior["High"].max())
        support = float(prior["Low"].min())

        entry_points = []

        if resistance > current_price * 1.01:
            entry_points.append(EntryPoint(
                kind=EntryPointKind.BREAKOUT,
                price=resistance * 1.01,
                confidence=75.0,
                description="Breakout above resistance",
            ))

        entry_points.append(EntryPoint(
            kind=EntryPointKind.PIVOT,
            price=current_price,
            confidence=60.0,
            description="Pivot point at current level",
        ))

        if support < current_price * 0.98:
            entry_points.append(EntryPoint(
                kind=EntryPointKind.SUPPORT,
                price=support * 1.01,
                confidence=45.0,
                description="Support level bounce",
            ))

        return sorted(entry_points, key=lambda e: e.confidence, reverse=True)

    def _calculate_score(
        self,
        uptrend: bool,
        base_count: int,
        contraction_pct: float,
        tightness_score: float,
        volume_dry_up: bool,
        breakout_score: float,
    ) -> int:
        """Composite 0-100 score, rounded half up."""
        cfg = self.config
        score = 0.0

        if uptrend:
            score += cfg.uptrend_points
        score += min(cfg.max_base_points, base_count * cfg.points_per_base)
        score += min(cfg.max_contraction_points, contraction_pct * cfg.contraction_weight)
        score += tightness_score * cfg.tightness_weight
        if volume_dry_up:
            score += cfg.dry_up_points
        score += breakout_score * cfg.breakout_weight

        return int(max(0, min(100, math.floor(score + 0.5))))

    def _generate_description(
        self,
        has_pattern: bool,
        score: int,
        base_count: int,
        contraction_pct: float,
        tightness_desc: str,
        volume_trend: Trend,
        breakout_desc: str,
    ) -> str:
        if not has_pattern:
            return NO_PATTERN_DESCRIPTION

        volume_desc = {
            Trend.DECREASING: "Volume drying up",
            Trend.INCREASING: "Volume increasing",
            Trend.STABLE: "Volume stable",
        }[volume_trend]

        parts = [
            f"VCP pattern detected with {score}% confidence.",
            f"Found {base_count} base formations.",
            f"Volatility contraction: {contraction_pct:.1f}%.",
            f"Price action: {tightness_desc}.",
            f"Volume: {volume_desc}.",
            f"Breakout potential: {breakout_desc}.",
        ]
        return " ".join(parts)


_default_analyzer = PatternAnalyzer()


def analyze_pattern(series: SeriesLike) -> PatternResult:
    """Analyze a series with the default analyzer configuration."""
    return _default_analyzer.analyze(series)
