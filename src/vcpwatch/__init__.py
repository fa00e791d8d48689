"""
VCP Watch Package

Scans price history for VCP (Volatility Contraction Pattern) setups and
monitors matching instruments for entry signals:
1. Pattern Analyzer - scores a series for a VCP
2. Signal Strategies - breakout, pivot, support, volume spike, moving average
3. Signal Monitor - recurring per-instrument checks, one alert per watch

ETFScanner ranks ETFs by return and risk; WatchSystem.scan_holdings then
scans the chosen ETF's holdings.

Usage:
    from src.vcpwatch import WatchSystem, create_system

    # Quick start
    system = create_system()
    record = system.scan_symbol("AAPL")
    if record and record.has_pattern:
        system.start_monitoring(record.id)

    # Custom configuration
    from src.vcpwatch import SystemConfig, MonitoringConfig
    config = SystemConfig(
        monitoring_config=MonitoringConfig(check_interval_minutes=5, min_confidence=80),
        auto_monitor=True,
    )
    system = WatchSystem(config)
"""

from .models import (
    AlertKind,
    AlertPayload,
    Base,
    EntryPoint,
    EntryPointKind,
    EntrySignal,
    ETFPerformance,
    ETFRecommendation,
    HoldingsScan,
    MonitoringConfig,
    PatternResult,
    PricePoint,
    StrategyKind,
    Trend,
    WatchEntry,
    WatchedInstrument,
)
from .errors import (
    DataUnavailable,
    NotEligible,
    NotifyFailure,
    PersistenceFailure,
    VCPWatchError,
)
from .analyzer import AnalyzerConfig, PatternAnalyzer, analyze_pattern
from .etf_scanner import (
    DEFAULT_ETFS,
    ETFScanner,
    ETFScannerConfig,
    max_drawdown,
    risk_score,
)
from .strategies import (
    BreakoutStrategy,
    MovingAverageStrategy,
    PivotStrategy,
    SignalStrategy,
    StrategyConfig,
    SupportBounceStrategy,
    VolumeSpikeStrategy,
    best_signal,
    default_strategies,
    get_strategy,
)
from .scheduler import TaskHandle, TaskScheduler
from .monitor import SignalMonitor
from .market_data import InMemoryDataSource, MarketDataSource, YFinanceDataSource
from .repository import InMemoryResultStore, ResultStore, SQLiteResultStore
from .notifications import (
    CallbackNotificationChannel,
    ConsoleNotificationChannel,
    LogNotificationChannel,
    NotificationChannel,
    NotificationHub,
    WebhookNotificationChannel,
)
from .watch_system import SystemConfig, WatchSystem, create_system

__all__ = [
    # Models
    "AlertKind",
    "AlertPayload",
    "Base",
    "EntryPoint",
    "EntryPointKind",
    "EntrySignal",
    "ETFPerformance",
    "ETFRecommendation",
    "HoldingsScan",
    "MonitoringConfig",
    "PatternResult",
    "PricePoint",
    "StrategyKind",
    "Trend",
    "WatchEntry",
    "WatchedInstrument",
    # Errors
    "VCPWatchError",
    "NotEligible",
    "DataUnavailable",
    "PersistenceFailure",
    "NotifyFailure",
    # Analyzer
    "AnalyzerConfig",
    "PatternAnalyzer",
    "analyze_pattern",
    # ETF scanning
    "DEFAULT_ETFS",
    "ETFScanner",
    "ETFScannerConfig",
    "max_drawdown",
    "risk_score",
    # Strategies
    "SignalStrategy",
    "StrategyConfig",
    "BreakoutStrategy",
    "PivotStrategy",
    "SupportBounceStrategy",
    "VolumeSpikeStrategy",
    "MovingAverageStrategy",
    "best_signal",
    "default_strategies",
    "get_strategy",
    # Monitoring
    "TaskHandle",
    "TaskScheduler",
    "SignalMonitor",
    # Collaborators
    "MarketDataSource",
    "YFinanceDataSource",
    "InMemoryDataSource",
    "ResultStore",
    "SQLiteResultStore",
    "InMemoryResultStore",
    # Notifications
    "NotificationHub",
    "NotificationChannel",
    "LogNotificationChannel",
    "ConsoleNotificationChannel",
    "WebhookNotificationChannel",
    "CallbackNotificationChannel",
    # Main System
    "WatchSystem",
    "SystemConfig",
    "create_system",
]
