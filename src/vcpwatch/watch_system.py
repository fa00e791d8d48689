"""
VCP Watch - Main Orchestrator

The WatchSystem coordinates all components:
- PatternAnalyzer for VCP detection
- ETFScanner for ranking ETFs whose holdings get scanned
- ResultStore for scanned instruments
- SignalMonitor for recurring entry-signal checks
- NotificationHub for multi-channel notifications

This is the main entry point for using VCP Watch.
"""

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .analyzer import AnalyzerConfig, PatternAnalyzer
from .errors import DataUnavailable, NotifyFailure, VCPWatchError
from .etf_scanner import ETFScanner, ETFScannerConfig
from .market_data import MarketDataSource, YFinanceDataSource
from .models import (
    AlertKind,
    AlertPayload,
    EntrySignal,
    ETFPerformance,
    ETFRecommendation,
    HoldingsScan,
    MonitoringConfig,
    PatternResult,
    WatchedInstrument,
)
from .monitor import SignalMonitor
from .notifications import (
    CallbackNotificationChannel,
    ConsoleNotificationChannel,
    LogNotificationChannel,
    NotificationHub,
)
from .repository import InMemoryResultStore, ResultStore, SQLiteResultStore
from .scheduler import TaskScheduler
from .series import SeriesLike, to_frame
from .strategies import StrategyConfig, default_strategies


logger = logging.getLogger(__name__)


@dataclass
class SystemConfig:
    """Configuration for VCP Watch."""
    # Database
    db_path: str = "data/vcpwatch.db"
    use_memory_db: bool = False  # Use in-memory store for testing

    # Detection
    analyzer_config: Optional[AnalyzerConfig] = None
    history_days: int = 365  # Daily bars requested per scan

    # ETF ranking
    etf_config: Optional[ETFScannerConfig] = None

    # Monitoring
    strategy_config: Optional[StrategyConfig] = None
    monitoring_config: Optional[MonitoringConfig] = None
    auto_monitor: bool = False  # Start monitoring every pattern found

    # Notifications
    enable_console_notifications: bool = True
    enable_log_notifications: bool = True
    notify_on_pattern: bool = True


class WatchSystem:
    """
    Main orchestrator for VCP Watch.

    Coordinates:
    - Fetching daily bars and scoring them for a VCP
    - Persisting scanned instruments
    - Monitoring pattern instruments for entry signals
    - Notification dispatch to multiple channels

    Usage:
        system = WatchSystem()
        record = system.scan_symbol("AAPL")
        if record.has_pattern:
            system.start_monitoring(record.id)
    """

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        data_source: Optional[MarketDataSource] = None,
        store: Optional[ResultStore] = None,
        scheduler: Optional[TaskScheduler] = None,
    ):
        """
        Initialize VCP Watch.

        Args:
            config: System configuration
            data_source: Market data (default: Yahoo Finance)
            store: Result store (default: per config)
            scheduler: Task scheduler shared by the monitor and background work
        """
        self.config = config or SystemConfig()

        # Initialize store
        if store is not None:
            self._store = store
        elif self.config.use_memory_db:
            self._store = InMemoryResultStore()
        else:
            self._store = SQLiteResultStore(self.config.db_path)

        self._data_source = data_source or YFinanceDataSource()
        self._scheduler = scheduler or TaskScheduler()
        self._analyzer = PatternAnalyzer(self.config.analyzer_config or AnalyzerConfig())
        self._etf_scanner = ETFScanner(self._data_source, self.config.etf_config or ETFScannerConfig())

        # Initialize notification hub
        self._notification_hub = NotificationHub()
        self._setup_default_channels()

        # Initialize monitor
        self._monitor = SignalMonitor(
            store=self._store,
            data_source=self._data_source,
            notifier=self._notification_hub,
            config=self.config.monitoring_config or MonitoringConfig(),
            strategies=default_strategies(self.config.strategy_config or StrategyConfig()),
            scheduler=self._scheduler,
        )

        logger.info("WatchSystem initialized")

    def _setup_default_channels(self) -> None:
        """Set up default notification channels based on config."""
        if self.config.enable_log_notifications:
            self._notification_hub.register_channel(
                LogNotificationChannel(name="log")
            )

        if self.config.enable_console_notifications:
            self._notification_hub.register_channel(
                ConsoleNotificationChannel(name="console", use_colors=True)
            )

    # === Scanning ===

    def scan_symbol(
        self,
        symbol: str,
        scan_name: str = "",
        name: str = "",
        df: Optional[pd.DataFrame] = None,
    ) -> Optional[WatchedInstrument]:
        """
        Analyze a symbol and store the result.

        Args:
            symbol: Stock symbol
            scan_name: Label of the scan that produced the record
            name: Display name of the instrument
            df: Daily OHLCV bars (fetched from the data source if omitted)

        Returns:
            The stored record, or None when no data is available

        Raises:
            DataUnavailable: The bars are not an OHLCV frame
            PersistenceFailure: The record could not be stored
        """
        if df is None:
            try:
                df = self._data_source.get_series(
                    symbol,
                    timeframe="1d",
                    lookback_days=self.config.history_days,
                )
            except DataUnavailable as e:
                logger.warning(f"Skipping {symbol}: {e}")
                return None

        if df is None or df.empty:
            logger.warning(f"No data for {symbol}")
            return None

        try:
            df = to_frame(df)
        except ValueError as e:
            raise DataUnavailable(symbol, str(e)) from e

        result = self._analyzer.analyze(df)
        current_price = float(df["Close"].iloc[-1])

        record = WatchedInstrument(
            symbol=symbol,
            name=name,
            scan_name=scan_name,
            has_pattern=result.has_pattern,
            pattern_score=float(result.score),
            pattern_snapshot=result.to_dict(),
            last_price=current_price,
        )
        self._store.save_instrument(record)

        if not result.has_pattern:
            logger.debug(f"No VCP pattern detected for {symbol} (score {result.score})")
            return record

        logger.info(f"VCP pattern detected for {symbol} with score {result.score}")

        if self.config.notify_on_pattern:
            payload = AlertPayload.for_pattern(
                symbol,
                result,
                current_price=current_price,
                name=name,
                scan_name=scan_name,
            )
            self._scheduler.submit(
                self._deliver,
                payload,
                description=f"vcp_found alert for {symbol}",
            )

        if self.config.auto_monitor:
            self._monitor.start_monitoring(record.id)

        return record

    def scan_symbols(
        self,
        symbols: Iterable[str],
        scan_name: str = "",
        names: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Optional[WatchedInstrument]]:
        """
        Scan multiple symbols.

        A failing symbol is logged and mapped to None; the scan continues.

        Returns:
            Dict mapping symbols to their stored records
        """
        names = names or {}
        results = {}

        for symbol in symbols:
            try:
                results[symbol] = self.scan_symbol(
                    symbol,
                    scan_name=scan_name,
                    name=names.get(symbol, ""),
                )
            except VCPWatchError as e:
                logger.error(f"Error processing {symbol}: {e}")
                results[symbol] = None

        found = sum(1 for r in results.values() if r is not None and r.has_pattern)
        logger.info(f"Scan complete: {found} of {len(results)} symbols show a VCP pattern")
        return results

    def analyze_pattern(self, series: SeriesLike) -> PatternResult:
        """
        Analyze price data without storing or notifying.

        Useful for preview/research.
        """
        return self._analyzer.analyze(series)

    # === ETF Scanning ===

    def rank_etfs(
        self,
        symbols: Optional[Iterable[str]] = None,
        period_days: Optional[int] = None,
    ) -> List[ETFPerformance]:
        """ETFs ranked by return over the period, best first."""
        return self._etf_scanner.rank_performance(symbols, period_days)

    def recommend_etf(
        self,
        symbols: Optional[Iterable[str]] = None,
        period_days: Optional[int] = None,
    ) -> Optional[ETFRecommendation]:
        """Best performing ETF with alternatives, or None without data."""
        return self._etf_scanner.recommend(symbols, period_days)

    def scan_holdings(
        self,
        etf_symbol: str,
        holdings: Iterable[str],
        scan_name: str = "",
        names: Optional[Mapping[str, str]] = None,
        period_days: Optional[int] = None,
    ) -> HoldingsScan:
        """
        Measure an ETF's performance and scan its holdings for VCP patterns.

        Args:
            etf_symbol: ETF the holdings belong to
            holdings: Holding symbols to scan
            scan_name: Label stored with each record (default: "<ETF> holdings")
            names: Display names by holding symbol
            period_days: Bars the ETF return is measured over

        Returns:
            HoldingsScan with one entry per holding (None where the scan failed)

        Raises:
            ValueError: If no holdings are given
        """
        holdings = list(holdings)
        if not holdings:
            raise ValueError(f"No holdings given for ETF {etf_symbol}")

        scan_name = scan_name or f"{etf_symbol} holdings"
        performance = self._etf_scanner.get_performance(etf_symbol, period_days)
        logger.info(f"Scanning {len(holdings)} holdings of {etf_symbol}")

        scan = HoldingsScan(
            etf_symbol=etf_symbol,
            etf_performance_pct=performance.performance_pct if performance else 0.0,
            records=self.scan_symbols(holdings, scan_name=scan_name, names=names),
            scan_name=scan_name,
        )
        logger.info(
            f"Scan completed for {etf_symbol}: {scan.stocks_scanned} stocks scanned, "
            f"{scan.vcp_found} VCP patterns found"
        )
        return scan

    def _deliver(self, payload: AlertPayload) -> bool:
        if not self._notification_hub.notify(payload):
            raise NotifyFailure(
                f"{payload.alert_kind.value} alert for {payload.symbol} reached no channel"
            )
        return True

    # === Monitoring ===

    def start_monitoring(self, instrument_id: str) -> Optional[EntrySignal]:
        """Start watching a stored pattern instrument for entry signals."""
        return self._monitor.start_monitoring(instrument_id)

    def stop_monitoring(self, instrument_id: str) -> bool:
        """Stop watching an instrument."""
        return self._monitor.stop_monitoring(instrument_id)

    def stop_all_monitoring(self) -> int:
        """Stop all watches."""
        return self._monitor.stop_all_monitoring()

    def update_monitoring_config(
        self,
        partial: Optional[Mapping[str, Any]] = None,
        **changes: Any,
    ) -> List[Future]:
        """Change monitoring settings and restart active watches."""
        return self._monitor.update_config(partial, **changes)

    def get_monitoring_status(self) -> List[Dict[str, Any]]:
        """Active watches."""
        return self._monitor.get_status()

    def get_instruments(
        self,
        has_pattern: Optional[bool] = None,
        symbol: Optional[str] = None,
    ) -> List[WatchedInstrument]:
        """Stored instruments, newest first."""
        return self._store.list_instruments(has_pattern=has_pattern, symbol=symbol)

    # === Notification Management ===

    def add_notification_channel(self, channel) -> None:
        """
        Add a notification channel.

        Args:
            channel: Notification channel to add
        """
        self._notification_hub.register_channel(channel)

    def remove_notification_channel(self, name: str) -> bool:
        """Remove a notification channel by name."""
        return self._notification_hub.unregister_channel(name)

    def add_callback_handler(
        self,
        name: str,
        callback: Callable[[AlertPayload, str], object],
        alert_kinds: Optional[List[AlertKind]] = None,
    ) -> None:
        """
        Add a callback function as a notification handler.

        Args:
            name: Handler name
            callback: Function(payload, message) to call
            alert_kinds: Optional filter for alert kinds
        """
        self._notification_hub.register_channel(
            CallbackNotificationChannel(name=name, callback=callback, alert_kinds=alert_kinds)
        )

    def get_notification_stats(self) -> dict:
        """Notification dispatch statistics."""
        return self._notification_hub.get_stats()

    def shutdown(self) -> None:
        """Stop all watches and background workers."""
        self._monitor.stop_all_monitoring()
        self._scheduler.shutdown()
        logger.info("WatchSystem shut down")

    # === Properties ===

    @property
    def analyzer(self) -> PatternAnalyzer:
        return self._analyzer

    @property
    def monitor(self) -> SignalMonitor:
        return self._monitor

    @property
    def etf_scanner(self) -> ETFScanner:
        return self._etf_scanner

    @property
    def notification_hub(self) -> NotificationHub:
        return self._notification_hub

    @property
    def store(self) -> ResultStore:
        return self._store

    @property
    def data_source(self) -> MarketDataSource:
        return self._data_source


def create_system(
    db_path: str = "data/vcpwatch.db",
    check_interval_minutes: float = 15.0,
    min_confidence: float = 70.0,
    timeframes: Iterable[str] = ("1h", "4h"),
    enable_console: bool = True,
    auto_monitor: bool = False,
    **overrides: Any,
) -> WatchSystem:
    """
    Factory function to create a configured WatchSystem.

    Args:
        db_path: Path to SQLite database
        check_interval_minutes: Minutes between entry-signal checks
        min_confidence: Minimum signal confidence that fires an alert
        timeframes: Timeframes checked in order
        enable_console: Whether to enable console notifications
        auto_monitor: Start monitoring every pattern found
        **overrides: Any other SystemConfig field

    Returns:
        Configured WatchSystem
    """
    config = SystemConfig(
        db_path=db_path,
        monitoring_config=MonitoringConfig(
            check_interval_minutes=check_interval_minutes,
            min_confidence=min_confidence,
            timeframes=tuple(timeframes),
        ),
        enable_console_notifications=enable_console,
        auto_monitor=auto_monitor,
        **overrides,
    )
    return WatchSystem(config)
