"""
Unit tests for VCP Watch entry signal strategies

Covers each of the five strategies, the registry and best-signal selection.
"""

import pytest
import pandas as pd
import numpy as np

from src.vcpwatch.models import EntrySignal, StrategyKind, WatchedInstrument
from src.vcpwatch.strategies import (
    BreakoutStrategy,
    MovingAverageStrategy,
    PivotStrategy,
    SignalStrategy,
    StrategyConfig,
    SupportBounceStrategy,
    VolumeSpikeStrategy,
    STRATEGY_REGISTRY,
    best_signal,
    default_strategies,
    get_strategy,
    risk_reward,
)


def make_window(closes, highs=None, lows=None, volumes=None):
    """Build an hourly OHLCV window."""
    closes = np.asarray(closes, dtype=float)
    n = len(closes)
    return pd.DataFrame(
        {
            "Open": closes,
            "High": np.asarray(highs if highs is not None else closes + 1.0, dtype=float),
            "Low": np.asarray(lows if lows is not None else closes - 1.0, dtype=float),
            "Close": closes,
            "Volume": np.asarray(volumes if volumes is not None else [1000.0] * n, dtype=float),
        },
        index=pd.date_range(start="2024-06-03 09:00", periods=n, freq="h"),
    )


@pytest.fixture
def instrument():
    """A stored instrument with a VCP pattern."""
    return WatchedInstrument(symbol="NVDA", name="NVIDIA Corp", has_pattern=True, pattern_score=72)


class TestRiskReward:
    """Tests for the reward-to-risk helper."""

    def test_long_setup(self):
        """Reward over risk for a long setup."""
        assert risk_reward(100.0, 110.0, 95.0) == pytest.approx(2.0)

    def test_no_risk(self):
        """A stop at or above the current price yields 0."""
        assert risk_reward(100.0, 110.0, 100.0) == 0.0
        assert risk_reward(100.0, 110.0, 105.0) == 0.0


class TestBreakoutStrategy:
    """Tests for the breakout strategy."""

    @pytest.fixture
    def strategy(self):
        return BreakoutStrategy()

    def _window(self, last_close, last_volume):
        closes = [100.0] * 19 + [last_close]
        volumes = [1000.0] * 19 + [last_volume]
        return make_window(closes, volumes=volumes)

    def test_fires_on_breakout_with_volume(self, strategy, instrument):
        """Close 1% above resistance on 2x volume."""
        signal = strategy.evaluate(instrument, self._window(103.0, 2000.0), "1h")

        assert signal is not None
        assert signal.strategy_kind == StrategyKind.BREAKOUT
        assert signal.confidence == 85
        assert signal.current_price == 103.0
        assert signal.target_price == pytest.approx(103.0 * 1.08)
        assert signal.stop_loss == pytest.approx(101.0 * 0.98)
        assert signal.risk_reward_ratio == pytest.approx(
            (103.0 * 1.08 - 103.0) / (103.0 - 101.0 * 0.98)
        )
        assert signal.timeframe == "1h"
        assert signal.symbol == "NVDA"
        assert signal.name == "NVIDIA Corp"
        assert signal.instrument_id == instrument.id

    @pytest.mark.parametrize("volume,expected", [
        (1300.0, 80),
        (1000.0, 75),
    ])
    def test_volume_bonus(self, strategy, instrument, volume, expected):
        """Lower volume ratios earn smaller bonuses."""
        signal = strategy.evaluate(instrument, self._window(103.0, volume), "1h")

        assert signal.confidence == expected

    def test_no_breakout(self, strategy, instrument):
        """Close under 1% above resistance does not fire."""
        assert strategy.evaluate(instrument, self._window(101.5, 3000.0), "1h") is None

    def test_zero_average_volume(self, strategy, instrument):
        """No prior volume falls back to the base bonus."""
        window = make_window([100.0] * 19 + [103.0], volumes=[0.0] * 20)

        signal = strategy.evaluate(instrument, window, "1h")

        assert signal.confidence == 75

    def test_short_window(self, strategy, instrument):
        """Fewer than 20 bars never fires."""
        window = self._window(103.0, 2000.0).tail(19)

        assert strategy.evaluate(instrument, window, "1h") is None


class TestPivotStrategy:
    """Tests for the classic pivot strategy."""

    @pytest.fixture
    def strategy(self):
        return PivotStrategy()

    def _window(self, last_close):
        closes = [100.0] * 14 + [last_close]
        highs = [102.0] * 15
        lows = [98.0] * 15
        return make_window(closes, highs=highs, lows=lows)

    def test_fires_just_above_pivot(self, strategy, instrument):
        """Close slightly above the pivot fires with closeness bonus."""
        signal = strategy.evaluate(instrument, self._window(100.3), "4h")

        pivot = (102.0 + 98.0 + 100.3) / 3
        distance = (100.3 - pivot) / pivot
        assert signal is not None
        assert signal.strategy_kind == StrategyKind.PIVOT
        assert signal.confidence == pytest.approx(65 + (1 - distance * 100) * 20)
        assert signal.target_price == pytest.approx(2 * pivot - 98.0)
        assert signal.stop_loss == pytest.approx(2 * pivot - 102.0)
        assert signal.timeframe == "4h"

    def test_below_pivot(self, strategy, instrument):
        """Close under the pivot does not fire."""
        assert strategy.evaluate(instrument, self._window(99.0), "4h") is None

    def test_too_far_above_pivot(self, strategy, instrument):
        """Close more than 1% above the pivot does not fire."""
        assert strategy.evaluate(instrument, self._window(101.8), "4h") is None

    def test_confidence_capped(self, strategy, instrument):
        """Confidence never exceeds 85."""
        signal = strategy.evaluate(instrument, self._window(100.01), "4h")

        assert signal.confidence <= 85

    def test_short_window(self, strategy, instrument):
        """Fewer than 15 bars never fires."""
        assert strategy.evaluate(instrument, self._window(100.3).tail(14), "4h") is None


class TestSupportBounceStrategy:
    """Tests for the support bounce strategy."""

    @pytest.fixture
    def strategy(self):
        return SupportBounceStrategy()

    def _window(self, previous_close, last_close):
        closes = [100.0] * 18 + [previous_close, last_close]
        highs = [c + 1.0 for c in closes]
        lows = [99.0] * 18 + [previous_close - 0.2, last_close - 0.2]
        lows[10] = 95.0  # inside the support window, outside the last 5 bars
        return make_window(closes, highs=highs, lows=lows)

    def test_fires_on_bounce(self, strategy, instrument):
        """Rising close within 2% of support fires."""
        signal = strategy.evaluate(instrument, self._window(95.5, 96.0), "1h")

        assert signal is not None
        assert signal.strategy_kind == StrategyKind.SUPPORT
        assert signal.confidence == pytest.approx(60 + (96.0 - 95.0) / 95.0 * 1000)
        assert signal.target_price == pytest.approx(95.0 * 1.06)
        assert signal.stop_loss == pytest.approx(95.0 * 0.97)

    def test_falling_close(self, strategy, instrument):
        """A close below the previous close does not fire."""
        assert strategy.evaluate(instrument, self._window(95.5, 95.4), "1h") is None

    def test_too_far_from_support(self, strategy, instrument):
        """A close more than 2% above support does not fire."""
        assert strategy.evaluate(instrument, self._window(97.5, 98.0), "1h") is None

    def test_confidence_capped(self, instrument):
        """Confidence never exceeds 80."""
        strategy = SupportBounceStrategy(StrategyConfig(support_bonus_scale=2000.0))

        signal = strategy.evaluate(instrument, self._window(96.0, 96.8), "1h")

        assert signal.confidence == 80


class TestVolumeSpikeStrategy:
    """Tests for the volume spike strategy."""

    @pytest.fixture
    def strategy(self):
        return VolumeSpikeStrategy()

    def _window(self, last_close, last_volume):
        closes = [100.0] * 9 + [last_close]
        volumes = [1000.0] * 9 + [last_volume]
        return make_window(closes, volumes=volumes)

    def test_bullish_spike(self, strategy, instrument):
        """3x volume on a 2% gain is a bullish signal."""
        signal = strategy.evaluate(instrument, self._window(102.0, 3000.0), "1h")

        assert signal is not None
        assert signal.strategy_kind == StrategyKind.VOLUME_SPIKE
        assert signal.confidence == pytest.approx(80)
        assert signal.is_bullish
        assert signal.target_price == pytest.approx(102.0 * 1.05)
        assert signal.stop_loss == pytest.approx(102.0 * 0.97)
        assert signal.risk_reward_ratio == pytest.approx(5 / 3)
        assert "bullish" in signal.reason

    def test_bearish_spike(self, strategy, instrument):
        """3x volume on a 2% drop mirrors target and stop."""
        signal = strategy.evaluate(instrument, self._window(98.0, 3000.0), "1h")

        assert not signal.is_bullish
        assert signal.target_price == pytest.approx(98.0 * 0.95)
        assert signal.stop_loss == pytest.approx(98.0 * 1.03)
        assert signal.risk_reward_ratio == pytest.approx(5 / 3)
        assert "bearish" in signal.reason

    def test_bonus_capped(self, strategy, instrument):
        """Very large spikes cap at 90."""
        signal = strategy.evaluate(instrument, self._window(102.0, 10000.0), "1h")

        assert signal.confidence == 90

    def test_ratio_at_threshold(self, strategy, instrument):
        """Exactly 2x volume does not fire."""
        assert strategy.evaluate(instrument, self._window(102.0, 2000.0), "1h") is None

    def test_small_price_move(self, strategy, instrument):
        """A move under 1% does not fire."""
        assert strategy.evaluate(instrument, self._window(100.5, 3000.0), "1h") is None

    def test_zero_average_volume(self, strategy, instrument):
        """No prior volume means no ratio and no signal."""
        window = make_window([100.0] * 9 + [102.0], volumes=[0.0] * 9 + [3000.0])

        assert strategy.evaluate(instrument, window, "1h") is None


class TestMovingAverageStrategy:
    """Tests for the moving-average alignment strategy."""

    @pytest.fixture
    def strategy(self):
        return MovingAverageStrategy()

    def test_aligned_uptrend(self, strategy, instrument):
        """Price above a rising 20/50 stack fires at 80."""
        window = make_window([100.0 + i for i in range(50)])

        signal = strategy.evaluate(instrument, window, "4h")

        assert signal is not None
        assert signal.strategy_kind == StrategyKind.MOVING_AVERAGE
        assert signal.confidence == 80
        assert signal.target_price == pytest.approx(149.0 * 1.06)
        assert signal.stop_loss == pytest.approx(124.5 * 0.98)

    def test_downtrend(self, strategy, instrument):
        """Falling prices do not fire."""
        window = make_window([150.0 - i for i in range(50)])

        assert strategy.evaluate(instrument, window, "4h") is None

    def test_short_window(self, strategy, instrument):
        """Fewer than 50 bars never fires."""
        window = make_window([100.0 + i for i in range(49)])

        assert strategy.evaluate(instrument, window, "4h") is None


class TestRegistry:
    """Tests for strategy lookup and selection."""

    def test_all_kinds_registered(self):
        """Every strategy kind has an implementation."""
        assert set(STRATEGY_REGISTRY) == set(StrategyKind)

    def test_get_strategy(self):
        """get_strategy returns an instance of the right class."""
        config = StrategyConfig(breakout_target_pct=0.1)
        strategy = get_strategy(StrategyKind.BREAKOUT, config)

        assert isinstance(strategy, BreakoutStrategy)
        assert strategy.config.breakout_target_pct == 0.1

    def test_unknown_kind(self):
        """Unknown kinds raise KeyError."""
        with pytest.raises(KeyError):
            get_strategy("fibonacci")

    def test_default_strategies(self):
        """One instance per strategy, in registry order."""
        strategies = default_strategies()

        assert [s.kind for s in strategies] == list(STRATEGY_REGISTRY)
        assert all(isinstance(s, SignalStrategy) for s in strategies)

    def test_strategies_are_independent(self, instrument):
        """A short window yields None from every strategy without raising."""
        window = make_window([100.0] * 5)

        assert [s.evaluate(instrument, window, "1h") for s in default_strategies()] == [None] * 5


class TestBestSignal:
    """Tests for best_signal selection."""

    def _signal(self, kind, confidence):
        return EntrySignal(
            instrument_id="i1",
            symbol="NVDA",
            strategy_kind=kind,
            confidence=confidence,
            current_price=100.0,
            target_price=108.0,
            stop_loss=97.0,
            risk_reward_ratio=2.67,
            timeframe="1h",
            reason="test",
        )

    def test_highest_confidence_wins(self):
        """The most confident signal is chosen."""
        low = self._signal(StrategyKind.PIVOT, 65)
        high = self._signal(StrategyKind.BREAKOUT, 85)

        assert best_signal([low, None, high]) is high

    def test_first_wins_ties(self):
        """Ties go to the earliest signal."""
        first = self._signal(StrategyKind.BREAKOUT, 80)
        second = self._signal(StrategyKind.MOVING_AVERAGE, 80)

        assert best_signal([first, second]) is first

    def test_no_signals(self):
        """All-None input yields None."""
        assert best_signal([None, None]) is None
        assert best_signal([]) is None
