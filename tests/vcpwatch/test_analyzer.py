"""
Unit tests for the VCP Pattern Analyzer

Covers:
- Insufficient data handling
- Determinism and input ordering
- Individual indicators (uptrend, bases, volatility, tightness, volume, breakout)
- Entry point ordering
- Composite score and pattern threshold
"""

import pytest
from datetime import datetime, timedelta
import pandas as pd
import numpy as np

from src.vcpwatch.analyzer import (
    AnalyzerConfig,
    PatternAnalyzer,
    analyze_pattern,
    INSUFFICIENT_DATA_DESCRIPTION,
    NO_PATTERN_DESCRIPTION,
)
from src.vcpwatch.models import EntryPointKind, PricePoint, Trend
from src.vcpwatch.series import from_frame


def make_frame(closes, highs=None, lows=None, volumes=None, spread=0.5):
    """Build a daily OHLCV frame from closes."""
    closes = np.asarray(closes, dtype=float)
    n = len(closes)
    if highs is None:
        highs = closes + spread
    if lows is None:
        lows = closes - spread
    if volumes is None:
        volumes = np.full(n, 1000.0)
    return pd.DataFrame(
        {
            "Open": closes,
            "High": np.asarray(highs, dtype=float),
            "Low": np.asarray(lows, dtype=float),
            "Close": closes,
            "Volume": np.asarray(volumes, dtype=float),
        },
        index=pd.date_range(start="2024-01-01", periods=n, freq="D"),
    )


def random_walk(seed, n=150):
    rng = np.random.default_rng(seed)
    closes = 100 * np.cumprod(1 + rng.normal(0.002, 0.02, n))
    highs = closes * (1 + rng.uniform(0, 0.02, n))
    lows = closes * (1 - rng.uniform(0, 0.02, n))
    volumes = rng.uniform(500, 5000, n)
    return make_frame(closes, highs=highs, lows=lows, volumes=volumes)


def vcp_frame():
    """Rising for 75 bars, then a tight flat base on drying volume."""
    closes = [100 + 2 * i if i < 75 else 250.0 for i in range(100)]
    volumes = [1000.0 if i < 80 else 500.0 for i in range(100)]
    return make_frame(closes, volumes=volumes)


@pytest.fixture
def analyzer():
    """Create analyzer with default config."""
    return PatternAnalyzer()


class TestAnalyzerSetup:
    """Tests for PatternAnalyzer initialization."""

    def test_default_config(self):
        """Analyzer uses default thresholds."""
        analyzer = PatternAnalyzer()

        assert analyzer.config.min_points == 50
        assert analyzer.config.window_size == 100
        assert analyzer.config.pattern_threshold == 60.0

    def test_custom_config(self):
        """Analyzer uses provided config."""
        analyzer = PatternAnalyzer(AnalyzerConfig(min_points=30, base_max_depth=0.05))

        assert analyzer.config.min_points == 30
        assert analyzer.config.base_max_depth == 0.05


class TestInsufficientData:
    """Tests for series below the minimum length."""

    @pytest.mark.parametrize("n", [0, 1, 40, 49])
    def test_short_series_returns_zero_result(self, analyzer, n):
        """Fewer than 50 points yields a zero-score result, not an error."""
        df = make_frame(np.linspace(100, 150, n)) if n else make_frame([])
        result = analyzer.analyze(df)

        assert result.has_pattern is False
        assert result.score == 0
        assert result.base_count == 0
        assert result.entry_points == ()
        assert result.description == INSUFFICIENT_DATA_DESCRIPTION

    def test_forty_point_example(self, analyzer):
        """A 40-point series of any values is insufficient."""
        result = analyzer.analyze(random_walk(seed=7, n=40))

        assert result.has_pattern is False
        assert result.score == 0
        assert result.base_count == 0
        assert result.description == "Insufficient data for analysis"

    def test_fifty_points_is_analyzed(self, analyzer):
        """Exactly 50 points is enough to analyze."""
        result = analyzer.analyze(make_frame([100.0] * 50))

        assert result.description != INSUFFICIENT_DATA_DESCRIPTION
        assert len(result.entry_points) > 0


class TestDeterminism:
    """Tests that identical input always yields identical output."""

    def test_repeated_calls_identical(self, analyzer):
        """Same series analyzed twice gives equal results."""
        df = random_walk(seed=1)

        assert analyzer.analyze(df) == analyzer.analyze(df)

    def test_shuffled_input_identical(self, analyzer):
        """Row order of the input does not change the result."""
        df = random_walk(seed=2)
        order = np.random.default_rng(42).permutation(len(df))
        shuffled = df.iloc[order]

        assert analyzer.analyze(shuffled) == analyzer.analyze(df)

    def test_price_point_input_matches_frame(self, analyzer):
        """A reversed list of PricePoint gives the same result as the frame."""
        df = random_walk(seed=3)
        points = list(reversed(from_frame(df)))

        assert analyzer.analyze(points) == analyzer.analyze(df)

    def test_input_not_modified(self, analyzer):
        """Analyzing does not mutate the caller's frame."""
        df = random_walk(seed=4)
        shuffled = df.iloc[::-1].copy()
        before = shuffled.copy()

        analyzer.analyze(shuffled)

        pd.testing.assert_frame_equal(shuffled, before)

    def test_module_function_matches_default_analyzer(self, analyzer):
        """analyze_pattern uses the default configuration."""
        df = random_walk(seed=5)

        assert analyze_pattern(df) == analyzer.analyze(df)


class TestUptrend:
    """Tests for the prior uptrend check."""

    def test_rising_series_is_uptrend(self, analyzer):
        """Recent mean well above the older mean is an uptrend."""
        df = make_frame([100 + i for i in range(100)])

        assert analyzer._check_uptrend(df) is True

    def test_flat_series_is_not_uptrend(self, analyzer):
        """Flat prices are not an uptrend."""
        df = make_frame([100.0] * 100)

        assert analyzer._check_uptrend(df) is False

    def test_small_gain_is_not_uptrend(self, analyzer):
        """A gain under 5% does not qualify."""
        closes = [100.0] * 60 + [104.0] * 40
        df = make_frame(closes)

        assert analyzer._check_uptrend(df) is False


class TestBaseDetection:
    """Tests for consolidation window detection."""

    def test_flat_series_every_window_is_base(self, analyzer):
        """Every +/-10 bar window of a flat series is a base."""
        df = make_frame([100.0] * 100)
        bases = analyzer._find_bases(df)

        assert len(bases) == 80
        assert bases[0].start_index == 0
        assert bases[0].end_index == 20
        assert bases[0].duration_bars == 20
        assert bases[0].depth_ratio == pytest.approx(0.01)

    def test_trending_series_has_no_bases(self, analyzer):
        """Steep trend windows are too deep to be bases."""
        df = make_frame([100 + 2 * i for i in range(100)])

        assert analyzer._find_bases(df) == []

    def test_bases_may_overlap(self, analyzer):
        """Overlapping bases are all reported, not merged."""
        bases = analyzer._find_bases(make_frame([100.0] * 60))

        assert bases[1].start_index < bases[0].end_index


class TestVolatilityContraction:
    """Tests for volatility contraction across lookbacks."""

    @staticmethod
    def _frame_from_returns(returns):
        closes = [100.0]
        for r in returns:
            closes.append(closes[-1] * (1 + r))
        return make_frame(closes)

    @staticmethod
    def _alternating(amplitudes):
        return [a if i % 2 == 0 else -a for i, a in enumerate(amplitudes)]

    def test_decreasing_volatility(self, analyzer):
        """Shrinking returns give a decreasing trend and high contraction."""
        returns = self._alternating([0.05] * 9 + [0.01] * 5 + [0.001] * 4)
        df = self._frame_from_returns(returns)

        contraction, trend = analyzer._calculate_volatility_contraction(df)

        assert trend == Trend.DECREASING
        assert contraction > 90

    def test_increasing_volatility(self, analyzer):
        """Growing returns give an increasing trend; contraction floors at 0."""
        returns = self._alternating([0.001] * 9 + [0.01] * 5 + [0.05] * 4)
        df = self._frame_from_returns(returns)

        contraction, trend = analyzer._calculate_volatility_contraction(df)

        assert trend == Trend.INCREASING
        assert contraction == 0.0

    def test_constant_prices_are_stable(self, analyzer):
        """Zero volatility is stable with no contraction."""
        df = make_frame([100.0] * 30)

        assert analyzer._calculate_volatility_contraction(df) == (0.0, Trend.STABLE)


class TestPriceTightness:
    """Tests for price tightness banding."""

    def test_very_tight_example(self, analyzer):
        """High 101 / low 99 / mean close 100 is 98% tight."""
        df = make_frame([100.0] * 20, spread=1.0)

        tightness, score, description = analyzer._calculate_price_tightness(df)

        assert tightness == pytest.approx(98.0)
        assert score == 90.0
        assert description == "Very tight price action"

    @pytest.mark.parametrize("spread,expected_score,expected_desc", [
        (10.0, 75.0, "Tight price action"),      # 80%
        (20.0, 50.0, "Moderate price action"),   # 60%
        (30.0, 25.0, "Loose price action"),      # 40%
    ])
    def test_bands(self, analyzer, spread, expected_score, expected_desc):
        """Wider ranges fall into lower bands."""
        df = make_frame([100.0] * 20, spread=spread)

        _, score, description = analyzer._calculate_price_tightness(df)

        assert score == expected_score
        assert description == expected_desc


class TestVolumeAnalysis:
    """Tests for volume dry-up detection."""

    def test_dry_up_example(self, analyzer):
        """600 recent vs 1000 prior volume is a dry-up."""
        volumes = [1000.0] * 20 + [600.0] * 20
        df = make_frame([100.0] * 40, volumes=volumes)

        ratio, dry_up, trend = analyzer._analyze_volume(df)

        assert ratio == pytest.approx(0.6)
        assert dry_up is True
        assert trend == Trend.DECREASING

    def test_increasing_volume(self, analyzer):
        """Volume up more than 30% is an increasing trend."""
        volumes = [1000.0] * 20 + [1500.0] * 20
        df = make_frame([100.0] * 40, volumes=volumes)

        ratio, dry_up, trend = analyzer._analyze_volume(df)

        assert ratio == pytest.approx(1.5)
        assert dry_up is False
        assert trend == Trend.INCREASING

    def test_stable_volume(self, analyzer):
        """Unchanged volume is stable."""
        df = make_frame([100.0] * 40)

        assert analyzer._analyze_volume(df) == (pytest.approx(1.0), False, Trend.STABLE)

    def test_zero_prior_volume(self, analyzer):
        """No volume in the older window gives a zero ratio, not a dry-up."""
        volumes = [0.0] * 20 + [800.0] * 20
        df = make_frame([100.0] * 40, volumes=volumes)

        assert analyzer._analyze_volume(df) == (0.0, False, Trend.STABLE)


class TestBreakoutPotential:
    """Tests for breakout potential scoring."""

    def test_near_resistance(self, analyzer):
        """Price just under resistance in the top of the range scores 85."""
        closes = [100.0] * 9 + [104.5]
        highs = [105.0] * 9 + [104.8]
        lows = [95.0] * 10
        df = make_frame(closes, highs=highs, lows=lows)

        score, description = analyzer._assess_breakout_potential(df)

        assert score == 85.0
        assert "high breakout potential" in description

    def test_lower_range(self, analyzer):
        """Price near support scores 30."""
        closes = [100.0] * 9 + [96.0]
        highs = [105.0] * 10
        lows = [95.0] * 10
        df = make_frame(closes, highs=highs, lows=lows)

        score, _ = analyzer._assess_breakout_potential(df)

        assert score == 30.0

    def test_zero_range(self, analyzer):
        """A degenerate range does not divide by zero."""
        df = make_frame([100.0] * 10, spread=0.0)

        score, _ = analyzer._assess_breakout_potential(df)

        assert score == 30.0


class TestEntryPoints:
    """Tests for entry point generation."""

    def test_pivot_always_present(self, analyzer):
        """A pivot entry at the current price is always included."""
        df = make_frame([100.0] * 20, spread=1.0)

        entries = analyzer._find_entry_points(df)

        assert len(entries) == 1
        assert entries[0].kind == EntryPointKind.PIVOT
        assert entries[0].price == 100.0
        assert entries[0].confidence == 60.0

    def test_all_entry_kinds_sorted(self, analyzer):
        """Breakout, pivot and support entries ordered by confidence."""
        closes = [100.0] * 20
        highs = [101.0] * 20
        lows = [99.0] * 20
        highs[5] = 110.0
        lows[8] = 90.0
        df = make_frame(closes, highs=highs, lows=lows)

        entries = analyzer._find_entry_points(df)

        assert [e.kind for e in entries] == [
            EntryPointKind.BREAKOUT,
            EntryPointKind.PIVOT,
            EntryPointKind.SUPPORT,
        ]
        assert entries[0].price == pytest.approx(111.1)
        assert entries[0].confidence == 75.0
        assert entries[2].price == pytest.approx(90.9)
        assert entries[2].confidence == 45.0

    @pytest.mark.parametrize("seed", range(5))
    def test_result_entry_points_sorted(self, analyzer, seed):
        """Entry points in any result are sorted by confidence descending."""
        result = analyzer.analyze(random_walk(seed=seed))
        confidences = [e.confidence for e in result.entry_points]

        assert confidences == sorted(confidences, reverse=True)
        assert result.best_entry_point == result.entry_points[0]


class TestCompositeScore:
    """Tests for the composite score and pattern decision."""

    def test_flat_series_score(self, analyzer):
        """Bases, tightness and breakout only: 25 + 13.5 + 3 rounds to 42."""
        result = analyzer.analyze(make_frame([100.0] * 100, spread=1.0))

        assert result.score == 42
        assert result.has_pattern is False
        assert result.uptrend is False
        assert result.description == NO_PATTERN_DESCRIPTION

    def test_vcp_detected(self, analyzer):
        """Uptrend into a tight, quiet base is a VCP."""
        result = analyzer.analyze(vcp_frame())

        assert result.uptrend is True
        assert result.base_count >= 4
        assert result.volume_dry_up is True
        assert result.price_tightness_score == 90.0
        assert result.score == 72
        assert result.has_pattern is True
        assert result.description.startswith("VCP pattern detected with 72% confidence.")
        assert "Volume drying up" in result.description

    def test_only_last_window_analyzed(self, analyzer):
        """Bars older than the 100-bar window do not affect the result."""
        df = vcp_frame()
        older = make_frame(np.linspace(500, 10, 200))
        older.index = pd.date_range(end=df.index[0] - timedelta(days=1), periods=200, freq="D")

        assert analyzer.analyze(pd.concat([older, df])) == analyzer.analyze(df)

    @pytest.mark.parametrize("seed", range(10))
    def test_score_bounds_and_threshold(self, analyzer, seed):
        """Score stays within 0-100 and has_pattern iff score > 60."""
        result = analyzer.analyze(random_walk(seed=seed))

        assert 0 <= result.score <= 100
        assert isinstance(result.score, int)
        assert result.has_pattern == (result.score > 60)

    def test_result_is_frozen(self, analyzer):
        """Results cannot be mutated."""
        result = analyzer.analyze(vcp_frame())

        with pytest.raises(Exception):
            result.score = 0


class TestPricePointInput:
    """Tests for analyzing lists of PricePoint."""

    def test_price_points_analyzed(self, analyzer):
        """A list of PricePoint is accepted."""
        start = datetime(2024, 1, 1)
        points = [
            PricePoint(start + timedelta(days=i), 100.0, 101.0, 99.0, 100.0, 1000.0)
            for i in range(60)
        ]

        result = analyzer.analyze(points)

        assert result.description != INSUFFICIENT_DATA_DESCRIPTION
        assert result.base_count == 40
