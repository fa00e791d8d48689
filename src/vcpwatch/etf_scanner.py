"""
VCP Watch - ETF Scanner

Ranks ETFs by their return over a lookback period and recommends the best
one, whose holdings can then be scanned for VCP patterns.

Risk score (0-100) of a series is the mean of:
- Annualized volatility of close-to-close returns, x100, capped at 100
- Maximum peak-to-trough drawdown of closes, x200, capped at 100
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import DataUnavailable
from .market_data import MarketDataSource
from .models import ETFPerformance, ETFRecommendation
from .series import SeriesLike, to_frame


logger = logging.getLogger(__name__)


DEFAULT_ETFS = (
    "SPY", "QQQ", "IWM", "DIA", "XLK", "XLF", "XLV", "XLE", "XLI", "XLP",
    "XLU", "XLY", "XLB", "GLD", "TLT", "VNQ", "EFA", "EEM", "HYG", "LQD",
)


@dataclass
class ETFScannerConfig:
    """Lookbacks, risk weights and recommendation thresholds."""
    period_days: int = 30             # Bars the return and risk are measured over
    history_days: int = 365           # Calendar days of daily bars requested
    max_workers: int = 4

    # Risk score
    min_risk_bars: int = 10
    default_risk_score: int = 50      # Used when the period is too short
    trading_days_per_year: int = 252
    volatility_weight: float = 100.0
    drawdown_weight: float = 200.0

    # Recommendation
    alternatives: int = 3
    significant_lead_pct: float = 2.0
    outperform_factor: float = 1.5
    low_risk: int = 40
    high_risk: int = 70

    # Confidence
    base_confidence: float = 50.0
    large_gap_pct: float = 3.0
    large_gap_bonus: float = 20.0
    small_gap_pct: float = 1.0
    small_gap_bonus: float = 10.0
    positive_bonus: float = 10.0
    high_risk_penalty: float = 15.0
    very_low_risk: int = 30
    very_low_risk_bonus: float = 10.0
    high_volume: float = 10_000_000
    high_volume_bonus: float = 5.0


def period_return(series: SeriesLike, period_days: int) -> float:
    """Close-to-close return in percent over the last period_days bars."""
    closes = to_frame(series)["Close"].tail(period_days)
    if len(closes) < 2:
        return 0.0
    start = float(closes.iloc[0])
    if start <= 0:
        return 0.0
    return (float(closes.iloc[-1]) - start) / start * 100


def max_drawdown(closes: Sequence[float]) -> float:
    """Largest fall from a running peak, as a fraction of that peak."""
    closes = pd.Series(closes, dtype=float).reset_index(drop=True)
    if closes.empty:
        return 0.0
    peaks = closes.cummax()
    drawdowns = (peaks - closes) / peaks.where(peaks > 0)
    worst = drawdowns.max()
    return float(worst) if pd.notna(worst) else 0.0


def annualized_volatility(closes: Sequence[float], trading_days_per_year: int = 252) -> float:
    """Population standard deviation of simple returns, annualized."""
    returns = pd.Series(closes, dtype=float).pct_change().dropna()
    if returns.empty:
        return 0.0
    return float(np.std(returns.to_numpy()) * math.sqrt(trading_days_per_year))


def risk_score(
    series: SeriesLike,
    period_days: int = 30,
    config: Optional[ETFScannerConfig] = None,
) -> int:
    """
    Risk of the last period_days bars on a 0-100 scale.

    Args:
        series: OHLCV frame or PricePoint iterable
        period_days: Bars considered
        config: Weights and caps (default: ETFScannerConfig())

    Returns:
        Mean of the volatility and drawdown scores, rounded half up;
        config.default_risk_score when fewer than min_risk_bars remain
    """
    cfg = config or ETFScannerConfig()
    closes = to_frame(series)["Close"].tail(period_days)
    if len(closes) < cfg.min_risk_bars:
        return cfg.default_risk_score

    volatility = annualized_volatility(closes, cfg.trading_days_per_year)
    volatility_score = min(100.0, volatility * cfg.volatility_weight)
    drawdown_score = min(100.0, max_drawdown(closes) * cfg.drawdown_weight)

    return int(math.floor((volatility_score + drawdown_score) / 2 + 0.5))


class ETFScanner:
    """
    Ranks ETFs by period performance.

    Usage:
        scanner = ETFScanner(YFinanceDataSource())
        ranking = scanner.rank_performance(["SPY", "QQQ", "XLK"], period_days=30)
        recommendation = scanner.recommend()
        print(recommendation.reason)
    """

    def __init__(
        self,
        data_source: MarketDataSource,
        config: Optional[ETFScannerConfig] = None,
        names: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the scanner.

        Args:
            data_source: Daily bars for each ETF
            config: Scanner configuration
            names: Display names by symbol
        """
        self._data_source = data_source
        self.config = config or ETFScannerConfig()
        self.names: Dict[str, str] = dict(names or {})

    def get_performance(
        self,
        symbol: str,
        period_days: Optional[int] = None,
    ) -> Optional[ETFPerformance]:
        """
        Return and risk of one ETF.

        Returns:
            ETFPerformance, or None when no usable data is available
        """
        period_days = period_days or self.config.period_days

        try:
            df = self._data_source.get_series(
                symbol,
                timeframe="1d",
                lookback_days=self.config.history_days,
            )
            if df is None or df.empty:
                raise DataUnavailable(symbol)
            df = to_frame(df)
        except (DataUnavailable, ValueError) as e:
            logger.warning(f"Skipping ETF {symbol}: {e}")
            return None

        return ETFPerformance(
            symbol=symbol,
            name=self.names.get(symbol, symbol),
            performance_pct=period_return(df, period_days),
            price=float(df["Close"].iloc[-1]),
            volume=float(df["Volume"].iloc[-1]),
            risk_score=risk_score(df, period_days, self.config),
        )

    def rank_performance(
        self,
        symbols: Optional[Iterable[str]] = None,
        period_days: Optional[int] = None,
    ) -> List[ETFPerformance]:
        """
        Performance of each ETF, best first.

        ETFs without data, or whose evaluation fails, are logged and left
        out. Equal returns keep the input order.

        Args:
            symbols: ETFs to rank (default: DEFAULT_ETFS)
            period_days: Bars the return is measured over
        """
        symbols = list(symbols) if symbols is not None else list(DEFAULT_ETFS)
        results: Dict[int, ETFPerformance] = {}

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {
                executor.submit(self.get_performance, symbol, period_days): (i, symbol)
                for i, symbol in enumerate(symbols)
            }

            for future in as_completed(futures):
                i, symbol = futures[future]
                try:
                    performance = future.result()
                    if performance is not None:
                        results[i] = performance
                except Exception as e:
                    logger.error(f"Error processing ETF {symbol}: {e}")

        ranking = [results[i] for i in sorted(results)]
        ranking.sort(key=lambda p: p.performance_pct, reverse=True)
        logger.info(f"Ranked {len(ranking)} of {len(symbols)} ETFs")
        return ranking

    def recommend(
        self,
        symbols: Optional[Iterable[str]] = None,
        period_days: Optional[int] = None,
    ) -> Optional[ETFRecommendation]:
        """
        Best performing ETF with the next ones as alternatives.

        Returns:
            ETFRecommendation, or None if no ETF could be evaluated
        """
        return self.recommend_from(self.rank_performance(symbols, period_days))

    def recommend_from(self, ranking: List[ETFPerformance]) -> Optional[ETFRecommendation]:
        """Recommendation for a ranking already ordered best first."""
        if not ranking:
            return None

        best = ranking[0]
        return ETFRecommendation(
            etf=best,
            reason=self._recommendation_reason(best, ranking),
            confidence=self._confidence(best, ranking),
            alternatives=tuple(ranking[1:1 + self.config.alternatives]),
        )

    def _performance_gap(self, best: ETFPerformance, ranking: List[ETFPerformance]) -> float:
        runner_up = ranking[1].performance_pct if len(ranking) > 1 else 0.0
        return best.performance_pct - runner_up

    def _recommendation_reason(self, best: ETFPerformance, ranking: List[ETFPerformance]) -> str:
        cfg = self.config
        gap = self._performance_gap(best, ranking)
        average = sum(p.performance_pct for p in ranking) / len(ranking)

        parts = [f"{best.symbol} ({best.name}) shows the strongest performance"]
        if gap > cfg.significant_lead_pct:
            parts[0] += f" with a significant lead of {gap:.1f}% over the next best performer."
        else:
            parts[0] += " among major ETFs."

        if best.performance_pct > average * cfg.outperform_factor:
            parts.append(
                f"It's significantly outperforming the average ETF return of {average:.1f}%."
            )

        if best.risk_score < cfg.low_risk:
            parts.append("The ETF shows relatively low risk characteristics.")
        elif best.risk_score > cfg.high_risk:
            parts.append("Note: This ETF carries higher risk due to volatility.")
        else:
            parts.append("The ETF presents a balanced risk-return profile.")

        return " ".join(parts)

    def _confidence(self, best: ETFPerformance, ranking: List[ETFPerformance]) -> float:
        cfg = self.config
        confidence = cfg.base_confidence

        gap = self._performance_gap(best, ranking)
        if gap > cfg.large_gap_pct:
            confidence += cfg.large_gap_bonus
        elif gap > cfg.small_gap_pct:
            confidence += cfg.small_gap_bonus

        if best.performance_pct > 0:
            confidence += cfg.positive_bonus

        if best.risk_score > cfg.high_risk:
            confidence -= cfg.high_risk_penalty
        elif best.risk_score < cfg.very_low_risk:
            confidence += cfg.very_low_risk_bonus

        if best.volume > cfg.high_volume:
            confidence += cfg.high_volume_bonus

        return max(0.0, min(100.0, confidence))
