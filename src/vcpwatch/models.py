"""
VCP Watch - Core Data Models

Defines the data structures shared by the analyzer, strategies and monitor:
- Price data (PricePoint)
- Pattern analysis output (Base, EntryPoint, PatternResult)
- Entry signals produced by the strategies
- Monitoring configuration and per-instrument watch state
- Stored instrument records and alert payloads
- ETF performance rankings
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
import uuid


class Trend(Enum):
    """Direction of a volatility or volume trend."""
    DECREASING = "decreasing"
    INCREASING = "increasing"
    STABLE = "stable"


class EntryPointKind(Enum):
    """Kinds of candidate entry prices found by the analyzer."""
    BREAKOUT = "breakout"
    PIVOT = "pivot"
    SUPPORT = "support"


class StrategyKind(Enum):
    """The closed set of entry-signal strategies."""
    BREAKOUT = "breakout"
    PIVOT = "pivot"
    SUPPORT = "support"
    VOLUME_SPIKE = "volume_spike"
    MOVING_AVERAGE = "moving_average"


class AlertKind(Enum):
    """Types of alert payloads handed to the notification dispatcher."""
    VCP_FOUND = "vcp_found"
    ENTRY_SIGNAL = "entry_signal"


@dataclass(frozen=True)
class PricePoint:
    """A single OHLCV bar."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PricePoint":
        """Create from dictionary."""
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            timestamp=timestamp,
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
        )


@dataclass(frozen=True)
class Base:
    """A consolidation window within a price series."""
    start_index: int
    end_index: int
    depth_ratio: float  # (max high - min low) / mean close
    duration_bars: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "start_index": self.start_index,
            "end_index": self.end_index,
            "depth_ratio": self.depth_ratio,
            "duration_bars": self.duration_bars,
        }


@dataclass(frozen=True)
class EntryPoint:
    """A candidate entry price with a confidence score (0-100)."""
    kind: EntryPointKind
    price: float
    confidence: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "price": self.price,
            "confidence": self.confidence,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntryPoint":
        """Create from dictionary."""
        return cls(
            kind=EntryPointKind(data["kind"]),
            price=data["price"],
            confidence=data["confidence"],
            description=data["description"],
        )


@dataclass(frozen=True)
class PatternResult:
    """
    Complete VCP analysis of one price series.

    Produced fresh by every analyzer call and never mutated afterwards.
    """
    has_pattern: bool
    score: int  # 0-100
    base_count: int
    volatility_contraction_pct: float
    price_tightness_score: float
    volume_dry_up: bool
    breakout_potential_score: float
    entry_points: Tuple[EntryPoint, ...]
    description: str

    # Diagnostics
    uptrend: bool = False
    bases: Tuple[Base, ...] = ()
    volatility_trend: Trend = Trend.STABLE
    price_tightness_pct: float = 0.0
    tightness_description: str = ""
    volume_ratio: float = 0.0
    volume_trend: Trend = Trend.STABLE
    breakout_description: str = ""

    @property
    def best_entry_point(self) -> Optional[EntryPoint]:
        """Highest-confidence entry point, if any."""
        if self.entry_points:
            return self.entry_points[0]
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "has_pattern": self.has_pattern,
            "score": self.score,
            "base_count": self.base_count,
            "volatility_contraction_pct": self.volatility_contraction_pct,
            "price_tightness_score": self.price_tightness_score,
            "volume_dry_up": self.volume_dry_up,
            "breakout_potential_score": self.breakout_potential_score,
            "entry_points": [e.to_dict() for e in self.entry_points],
            "description": self.description,
            "uptrend": self.uptrend,
            "volatility_trend": self.volatility_trend.value,
            "price_tightness_pct": self.price_tightness_pct,
            "tightness_description": self.tightness_description,
            "volume_ratio": self.volume_ratio,
            "volume_trend": self.volume_trend.value,
            "breakout_description": self.breakout_description,
        }


@dataclass(frozen=True)
class EntrySignal:
    """
    An entry signal produced by one strategy for one timeframe.

    Ephemeral: consumed immediately by the monitor and stored only as part
    of the instrument record.
    """
    instrument_id: str
    symbol: str
    strategy_kind: StrategyKind
    confidence: float
    current_price: float
    target_price: float
    stop_loss: float
    risk_reward_ratio: float
    timeframe: str
    reason: str
    name: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_bullish(self) -> bool:
        """Whether the signal targets a price above the current one."""
        return self.target_price >= self.current_price

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "instrument_id": self.instrument_id,
            "symbol": self.symbol,
            "name": self.name,
            "strategy_kind": self.strategy_kind.value,
            "confidence": self.confidence,
            "current_price": self.current_price,
            "target_price": self.target_price,
            "stop_loss": self.stop_loss,
            "risk_reward_ratio": self.risk_reward_ratio,
            "timeframe": self.timeframe,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntrySignal":
        """Create from dictionary."""
        return cls(
            instrument_id=data["instrument_id"],
            symbol=data["symbol"],
            name=data.get("name", ""),
            strategy_kind=StrategyKind(data["strategy_kind"]),
            confidence=data["confidence"],
            current_price=data["current_price"],
            target_price=data["target_price"],
            stop_loss=data["stop_loss"],
            risk_reward_ratio=data["risk_reward_ratio"],
            timeframe=data["timeframe"],
            reason=data["reason"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


def _default_lookback_days() -> Dict[str, int]:
    return {"1h": 7, "4h": 14}


@dataclass(frozen=True)
class MonitoringConfig:
    """Process-wide configuration of the signal monitor."""
    check_interval_minutes: float = 15.0
    timeframes: Tuple[str, ...] = ("1h", "4h")
    min_confidence: float = 70.0
    max_risk_per_trade_pct: float = 2.0
    alerts_enabled: bool = True

    # Days of data requested per timeframe; anything unlisted gets the default
    timeframe_lookback_days: Mapping[str, int] = field(default_factory=_default_lookback_days)
    default_lookback_days: int = 30

    def __post_init__(self):
        if isinstance(self.timeframes, str):
            object.__setattr__(self, "timeframes", (self.timeframes,))
        elif isinstance(self.timeframes, (list, set, frozenset)):
            object.__setattr__(self, "timeframes", tuple(self.timeframes))
        if self.check_interval_minutes <= 0:
            raise ValueError(
                f"check_interval_minutes must be positive, got {self.check_interval_minutes}"
            )
        if not 0 <= self.min_confidence <= 100:
            raise ValueError(f"min_confidence must be within 0-100, got {self.min_confidence}")
        if not self.timeframes:
            raise ValueError("At least one timeframe is required")

    @property
    def check_interval_seconds(self) -> float:
        return self.check_interval_minutes * 60

    def lookback_days_for(self, timeframe: str) -> int:
        """Days of history to request for a timeframe."""
        return self.timeframe_lookback_days.get(timeframe, self.default_lookback_days)

    def merged(self, partial: Mapping[str, Any]) -> "MonitoringConfig":
        """
        Return a new config with the given fields replaced.

        Raises:
            ValueError: If a key is not a config field or a value is invalid
        """
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise ValueError(f"Unknown monitoring config fields: {', '.join(sorted(unknown))}")
        return replace(self, **dict(partial))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "check_interval_minutes": self.check_interval_minutes,
            "timeframes": list(self.timeframes),
            "min_confidence": self.min_confidence,
            "max_risk_per_trade_pct": self.max_risk_per_trade_pct,
            "alerts_enabled": self.alerts_enabled,
            "timeframe_lookback_days": dict(self.timeframe_lookback_days),
            "default_lookback_days": self.default_lookback_days,
        }


@dataclass
class WatchedInstrument:
    """
    Stored record of a scanned instrument.

    Written by the scan pipeline, read by the monitor to decide eligibility
    and updated when an entry signal fires.
    """
    symbol: str
    has_pattern: bool
    pattern_score: float = 0.0
    name: str = ""
    scan_name: str = ""
    pattern_snapshot: Dict[str, Any] = field(default_factory=dict)

    # Signal state
    last_price: Optional[float] = None
    entry_signal: bool = False
    last_signal: Optional[Dict[str, Any]] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def mark_signal(self, signal: EntrySignal) -> None:
        """Record that an entry signal fired for this instrument."""
        self.entry_signal = True
        self.last_price = signal.current_price
        self.last_signal = signal.to_dict()
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "name": self.name,
            "scan_name": self.scan_name,
            "has_pattern": self.has_pattern,
            "pattern_score": self.pattern_score,
            "pattern_snapshot": self.pattern_snapshot,
            "last_price": self.last_price,
            "entry_signal": self.entry_signal,
            "last_signal": self.last_signal,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchedInstrument":
        """Create from dictionary."""
        record = cls(
            id=data["id"],
            symbol=data["symbol"],
            name=data.get("name", ""),
            scan_name=data.get("scan_name", ""),
            has_pattern=bool(data["has_pattern"]),
            pattern_score=data.get("pattern_score", 0.0),
            pattern_snapshot=data.get("pattern_snapshot") or {},
            last_price=data.get("last_price"),
            entry_signal=bool(data.get("entry_signal", False)),
            last_signal=data.get("last_signal"),
        )
        record.created_at = datetime.fromisoformat(data["created_at"])
        record.updated_at = datetime.fromisoformat(data["updated_at"])
        return record


@dataclass
class WatchEntry:
    """The monitor's state for one instrument while it is being watched."""
    instrument_id: str
    symbol: str
    interval_minutes: float
    handle: Any  # scheduler.TaskHandle
    started_at: datetime = field(default_factory=datetime.now)

    def to_status(self) -> Dict[str, Any]:
        """Status row exposed to the API layer."""
        return {
            "instrument_id": self.instrument_id,
            "symbol": self.symbol,
            "interval_minutes": self.interval_minutes,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class AlertPayload:
    """Everything a notification channel needs to render an alert."""
    alert_kind: AlertKind
    symbol: str
    name: str = ""
    pattern_score: Optional[float] = None
    current_price: Optional[float] = None
    entry_points: Tuple[EntryPoint, ...] = ()
    signal: Optional[EntrySignal] = None
    scan_name: str = ""
    created_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def for_signal(cls, record: WatchedInstrument, signal: EntrySignal) -> "AlertPayload":
        """Build an entry-signal alert for a stored instrument."""
        return cls(
            alert_kind=AlertKind.ENTRY_SIGNAL,
            symbol=record.symbol,
            name=record.name,
            pattern_score=record.pattern_score,
            current_price=signal.current_price,
            entry_points=(
                EntryPoint(
                    kind=_entry_kind_for(signal.strategy_kind),
                    price=signal.target_price,
                    confidence=signal.confidence,
                    description=signal.reason,
                ),
            ),
            signal=signal,
            scan_name=record.scan_name,
        )

    @classmethod
    def for_pattern(
        cls,
        symbol: str,
        result: PatternResult,
        current_price: Optional[float] = None,
        name: str = "",
        scan_name: str = "",
    ) -> "AlertPayload":
        """Build a pattern-found alert from an analysis result."""
        return cls(
            alert_kind=AlertKind.VCP_FOUND,
            symbol=symbol,
            name=name,
            pattern_score=float(result.score),
            current_price=current_price,
            entry_points=result.entry_points,
            scan_name=scan_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "alert_kind": self.alert_kind.value,
            "symbol": self.symbol,
            "name": self.name,
            "pattern_score": self.pattern_score,
            "current_price": self.current_price,
            "entry_points": [e.to_dict() for e in self.entry_points],
            "signal": self.signal.to_dict() if self.signal else None,
            "scan_name": self.scan_name,
            "created_at": self.created_at.isoformat(),
        }


def _entry_kind_for(kind: StrategyKind) -> EntryPointKind:
    # Volume and moving-average signals enter at the current level
    if kind == StrategyKind.BREAKOUT:
        return EntryPointKind.BREAKOUT
    if kind == StrategyKind.SUPPORT:
        return EntryPointKind.SUPPORT
    return EntryPointKind.PIVOT


@dataclass(frozen=True)
class ETFPerformance:
    """Period return and risk of one ETF."""
    symbol: str
    name: str
    performance_pct: float  # Close-to-close return over the period
    price: float
    volume: float
    risk_score: int  # 0-100, volatility and drawdown combined

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "symbol": self.symbol,
            "name": self.name,
            "performance_pct": self.performance_pct,
            "price": self.price,
            "volume": self.volume,
            "risk_score": self.risk_score,
        }


@dataclass(frozen=True)
class ETFRecommendation:
    """The best performing ETF of a ranking, with runners-up."""
    etf: ETFPerformance
    reason: str
    confidence: float
    alternatives: Tuple[ETFPerformance, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "etf": self.etf.to_dict(),
            "reason": self.reason,
            "confidence": self.confidence,
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class HoldingsScan:
    """Outcome of scanning an ETF's holdings for VCP patterns."""
    etf_symbol: str
    etf_performance_pct: float
    records: Dict[str, Optional[WatchedInstrument]] = field(default_factory=dict)
    scan_name: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def stocks_scanned(self) -> int:
        return sum(1 for r in self.records.values() if r is not None)

    @property
    def vcp_found(self) -> int:
        return sum(1 for r in self.records.values() if r is not None and r.has_pattern)

    @property
    def patterns(self) -> List[WatchedInstrument]:
        """Records with a VCP pattern, highest score first."""
        found = [r for r in self.records.values() if r is not None and r.has_pattern]
        return sorted(found, key=lambda r: r.pattern_score, reverse=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "etf_symbol": self.etf_symbol,
            "etf_performance_pct": self.etf_performance_pct,
            "scan_name": self.scan_name,
            "stocks_scanned": self.stocks_scanned,
            "vcp_found": self.vcp_found,
            "records": {
                symbol: record.to_dict() if record else None
                for symbol, record in self.records.items()
            },
            "created_at": self.created_at.isoformat(),
        }
