"""
VCP Watch - Entry Signal Strategies

Five independent strategies, each turning a recent OHLCV window into an
optional EntrySignal:
- Breakout above recent resistance
- Classic pivot point
- Support bounce
- Volume spike
- Moving-average alignment

Every strategy implements SignalStrategy.evaluate and is registered under
its StrategyKind; the monitor only ever talks to the base class.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import pandas as pd

from .models import EntrySignal, StrategyKind, WatchedInstrument


@dataclass
class StrategyConfig:
    """Heuristic constants shared by the strategies."""
    # Breakout
    breakout_lookback: int = 10
    breakout_threshold: float = 1.01
    breakout_base_confidence: float = 70.0
    breakout_max_confidence: float = 95.0
    breakout_target_pct: float = 0.08
    breakout_stop_factor: float = 0.98

    # Pivot
    pivot_lookback: int = 8
    pivot_max_distance: float = 0.01
    pivot_base_confidence: float = 65.0
    pivot_closeness_bonus: float = 20.0
    pivot_max_confidence: float = 85.0

    # Support bounce
    support_lookback: int = 15
    support_exclude_recent: int = 5
    support_bounce_threshold: float = 1.02
    support_base_confidence: float = 60.0
    support_bonus_scale: float = 1000.0
    support_max_confidence: float = 80.0
    support_target_factor: float = 1.06
    support_stop_factor: float = 0.97

    # Volume spike
    volume_lookback: int = 10
    volume_spike_ratio: float = 2.0
    volume_min_price_change: float = 0.01
    volume_base_confidence: float = 70.0
    volume_max_bonus: float = 20.0
    volume_bonus_scale: float = 10.0
    volume_max_confidence: float = 90.0
    volume_target_pct: float = 0.05
    volume_stop_pct: float = 0.03

    # Moving averages
    ma_short: int = 20
    ma_long: int = 50
    ma_base_confidence: float = 65.0
    ma_alignment_bonus: float = 10.0
    ma_price_bonus: float = 5.0
    ma_max_confidence: float = 85.0
    ma_target_pct: float = 0.06
    ma_stop_factor: float = 0.98


def risk_reward(current: float, target: float, stop: float) -> float:
    """
    Reward-to-risk ratio for a long setup.

    Returns 0.0 when there is no risk (stop at or above the current price).
    """
    risk = current - stop
    if risk > 0:
        return (target - current) / risk
    return 0.0


def _average_volume(volumes: pd.Series) -> float:
    return float(volumes.mean()) if len(volumes) else 0.0


class SignalStrategy(ABC):
    """Base class for entry-signal strategies."""

    kind: StrategyKind
    min_bars: int

    def __init__(self, config: Optional[StrategyConfig] = None):
        self.config = config or StrategyConfig()

    def evaluate(
        self,
        instrument: WatchedInstrument,
        window: pd.DataFrame,
        timeframe: str,
    ) -> Optional[EntrySignal]:
        """
        Evaluate a recent window for an entry signal.

        Args:
            instrument: Stored record of the watched instrument
            window: OHLCV DataFrame, oldest bar first
            timeframe: Timeframe label carried into the signal

        Returns:
            EntrySignal if the strategy fires, None otherwise
        """
        if len(window) < self.min_bars:
            return None
        return self._evaluate(instrument, window, timeframe)

    @abstractmethod
    def _evaluate(
        self,
        instrument: WatchedInstrument,
        window: pd.DataFrame,
        timeframe: str,
    ) -> Optional[EntrySignal]:
        ...

    def _signal(
        self,
        instrument: WatchedInstrument,
        timeframe: str,
        confidence: float,
        current_price: float,
        target_price: float,
        stop_loss: float,
        reason: str,
        risk_reward_ratio: Optional[float] = None,
    ) -> EntrySignal:
        if risk_reward_ratio is None:
            risk_reward_ratio = risk_reward(current_price, target_price, stop_loss)
        return EntrySignal(
            instrument_id=instrument.id,
            symbol=instrument.symbol,
            name=instrument.name,
            strategy_kind=self.kind,
            confidence=confidence,
            current_price=current_price,
            target_price=target_price,
            stop_loss=stop_loss,
            risk_reward_ratio=risk_reward_ratio,
            timeframe=timeframe,
            reason=reason,
        )


class BreakoutStrategy(SignalStrategy):
    """Close at least 1% above the highest high of the prior bars."""

    kind = StrategyKind.BREAKOUT
    min_bars = 20

    def _evaluate(self, instrument, window, timeframe):
        cfg = self.config
        recent = window.tail(cfg.breakout_lookback)
        prior = recent.iloc[:-1]
        current_price = float(recent["Close"].iloc[-1])

        resistance = float(prior["High"].max())
        if current_price < resistance * cfg.breakout_threshold:
            return None

        avg_volume = _average_volume(prior["Volume"])
        volume = float(recent["Volume"].iloc[-1])
        volume_ratio = volume / avg_volume if avg_volume > 0 else 1.0

        if volume_ratio > 1.5:
            bonus = 15
        elif volume_ratio > 1.2:
            bonus = 10
        else:
            bonus = 5
        confidence = min(cfg.breakout_max_confidence, cfg.breakout_base_confidence + bonus)

        return self._signal(
            instrument,
            timeframe,
            confidence=confidence,
            current_price=current_price,
            target_price=current_price * (1 + cfg.breakout_target_pct),
            stop_loss=resistance * cfg.breakout_stop_factor,
            reason=(
                f"Breakout above resistance at ${resistance:.2f} "
                f"with {volume_ratio:.1f}x volume"
            ),
        )


class PivotStrategy(SignalStrategy):
    """Price just above the classic (H+L+C)/3 pivot."""

    kind = StrategyKind.PIVOT
    min_bars = 15

    def _evaluate(self, instrument, window, timeframe):
        cfg = self.config
        recent = window.tail(cfg.pivot_lookback)
        current_price = float(recent["Close"].iloc[-1])

        high = float(recent["High"].max())
        low = float(recent["Low"].min())
        pivot = (high + low + current_price) / 3
        if pivot <= 0:
            return None

        support1 = 2 * pivot - high
        resistance1 = 2 * pivot - low

        distance = abs(current_price - pivot) / pivot
        if distance >= cfg.pivot_max_distance or current_price <= pivot:
            return None

        # distance is a fraction; 0% distance earns the full bonus
        confidence = min(
            cfg.pivot_max_confidence,
            cfg.pivot_base_confidence + (1 - distance * 100) * cfg.pivot_closeness_bonus,
        )

        return self._signal(
            instrument,
            timeframe,
            confidence=confidence,
            current_price=current_price,
            target_price=resistance1,
            stop_loss=support1,
            reason=f"Price at pivot point ${pivot:.2f}, showing upward momentum",
        )


class SupportBounceStrategy(SignalStrategy):
    """Rising close within 2% above recent support."""

    kind = StrategyKind.SUPPORT
    min_bars = 20

    def _evaluate(self, instrument, window, timeframe):
        cfg = self.config
        recent = window.tail(cfg.support_lookback)
        current_price = float(recent["Close"].iloc[-1])

        support = float(recent.iloc[:-cfg.support_exclude_recent]["Low"].min())
        if support <= 0:
            return None
        if not support <= current_price <= support * cfg.support_bounce_threshold:
            return None

        previous_close = float(recent["Close"].iloc[-2])
        if current_price <= previous_close:
            return None

        confidence = min(
            cfg.support_max_confidence,
            cfg.support_base_confidence
            + (current_price - support) / support * cfg.support_bonus_scale,
        )

        return self._signal(
            instrument,
            timeframe,
            confidence=confidence,
            current_price=current_price,
            target_price=support * cfg.support_target_factor,
            stop_loss=support * cfg.support_stop_factor,
            reason=f"Bouncing off support level at ${support:.2f}",
        )


class VolumeSpikeStrategy(SignalStrategy):
    """Volume above twice its recent average with a meaningful price move."""

    kind = StrategyKind.VOLUME_SPIKE
    min_bars = 10

    def _evaluate(self, instrument, window, timeframe):
        cfg = self.config
        recent = window.tail(cfg.volume_lookback)
        current_price = float(recent["Close"].iloc[-1])
        previous_close = float(recent["Close"].iloc[-2])

        avg_volume = _average_volume(recent["Volume"].iloc[:-1])
        if avg_volume <= 0 or previous_close <= 0:
            return None

        volume_ratio = float(recent["Volume"].iloc[-1]) / avg_volume
        if volume_ratio <= cfg.volume_spike_ratio:
            return None

        price_change = (current_price - previous_close) / previous_close
        if abs(price_change) <= cfg.volume_min_price_change:
            return None

        confidence = min(
            cfg.volume_max_confidence,
            cfg.volume_base_confidence
            + min(cfg.volume_max_bonus, (volume_ratio - cfg.volume_spike_ratio) * cfg.volume_bonus_scale),
        )

        is_bullish = price_change > 0
        if is_bullish:
            target = current_price * (1 + cfg.volume_target_pct)
            stop = current_price * (1 - cfg.volume_stop_pct)
            ratio = risk_reward(current_price, target, stop)
        else:
            target = current_price * (1 - cfg.volume_target_pct)
            stop = current_price * (1 + cfg.volume_stop_pct)
            risk = stop - current_price
            ratio = (current_price - target) / risk if risk > 0 else 0.0

        direction = "bullish" if is_bullish else "bearish"
        return self._signal(
            instrument,
            timeframe,
            confidence=confidence,
            current_price=current_price,
            target_price=target,
            stop_loss=stop,
            risk_reward_ratio=ratio,
            reason=(
                f"Volume spike of {volume_ratio:.1f}x average "
                f"with {direction} price movement"
            ),
        )


class MovingAverageStrategy(SignalStrategy):
    """Price above a rising 20/50 moving-average stack."""

    kind = StrategyKind.MOVING_AVERAGE
    min_bars = 50

    def _evaluate(self, instrument, window, timeframe):
        cfg = self.config
        closes = window["Close"]
        current_price = float(closes.iloc[-1])

        ma_short = float(closes.tail(cfg.ma_short).mean())
        ma_long = float(closes.tail(cfg.ma_long).mean())

        above_short = current_price > ma_short
        above_long = current_price > ma_long
        aligned = ma_short > ma_long
        if not (above_short and above_long and aligned):
            return None

        confidence = min(
            cfg.ma_max_confidence,
            cfg.ma_base_confidence + cfg.ma_alignment_bonus + cfg.ma_price_bonus,
        )

        return self._signal(
            instrument,
            timeframe,
            confidence=confidence,
            current_price=current_price,
            target_price=current_price * (1 + cfg.ma_target_pct),
            stop_loss=min(ma_short, ma_long) * cfg.ma_stop_factor,
            reason=(
                f"Price above both {cfg.ma_short}-period MA (${ma_short:.2f}) "
                f"and {cfg.ma_long}-period MA (${ma_long:.2f})"
            ),
        )


STRATEGY_REGISTRY: Dict[StrategyKind, type] = {
    StrategyKind.BREAKOUT: BreakoutStrategy,
    StrategyKind.PIVOT: PivotStrategy,
    StrategyKind.SUPPORT: SupportBounceStrategy,
    StrategyKind.VOLUME_SPIKE: VolumeSpikeStrategy,
    StrategyKind.MOVING_AVERAGE: MovingAverageStrategy,
}


def get_strategy(kind: StrategyKind, config: Optional[StrategyConfig] = None) -> SignalStrategy:
    """
    Instantiate a strategy by kind.

    Raises:
        KeyError: If no strategy is registered for the kind
    """
    if kind not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{kind}'. "
            f"Available: {', '.join(k.value for k in STRATEGY_REGISTRY)}"
        )
    return STRATEGY_REGISTRY[kind](config)


def default_strategies(config: Optional[StrategyConfig] = None) -> Tuple[SignalStrategy, ...]:
    """One instance of every registered strategy, in registry order."""
    return tuple(get_strategy(kind, config) for kind in STRATEGY_REGISTRY)


def best_signal(signals: Iterable[Optional[EntrySignal]]) -> Optional[EntrySignal]:
    """Highest-confidence signal; the earliest one wins ties."""
    best = None
    for signal in signals:
        if signal is None:
            continue
        if best is None or signal.confidence > best.confidence:
            best = signal
    return best
