"""
VCP Watch - Signal Monitor

Watches instruments with a recorded VCP pattern for entry signals.

Lifecycle per instrument: Idle -> Watching -> Idle.
- start_monitoring registers a recurring check and runs one immediately
- every check runs all strategies per configured timeframe and takes the
  first timeframe whose best signal clears min_confidence
- a qualifying signal is persisted, alerted once, and ends the watch
- stop_monitoring / stop_all_monitoring end watches explicitly

The WatchEntry registry is the monitor's only shared mutable state and is
always mutated under one lock. A check only acts on a signal if its task
handle still owns the instrument's entry, so a stop or restart issued
while a check is in flight wins.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import DataUnavailable, NotEligible, PersistenceFailure
from .market_data import MarketDataSource
from .models import (
    AlertPayload,
    EntrySignal,
    MonitoringConfig,
    WatchEntry,
    WatchedInstrument,
)
from .notifications import NotificationDispatcher
from .repository import ResultStore
from .scheduler import TaskHandle, TaskScheduler
from .series import to_frame
from .strategies import SignalStrategy, best_signal, default_strategies


logger = logging.getLogger(__name__)


class SignalMonitor:
    """
    Scheduler of recurring entry-signal checks, one per watched instrument.

    Usage:
        monitor = SignalMonitor(store, data_source, hub)
        monitor.start_monitoring(instrument_id)
        monitor.get_status()
        monitor.update_config({"check_interval_minutes": 5})
        monitor.stop_all_monitoring()
    """

    def __init__(
        self,
        store: ResultStore,
        data_source: MarketDataSource,
        notifier: NotificationDispatcher,
        config: Optional[MonitoringConfig] = None,
        strategies: Optional[Iterable[SignalStrategy]] = None,
        scheduler: Optional[TaskScheduler] = None,
        window_bars: int = 50,
    ):
        """
        Initialize the monitor.

        Args:
            store: Source of instrument records, target of fired signals
            data_source: Market data for each check
            notifier: Alert dispatcher
            config: Monitoring configuration
            strategies: Strategies to run (default: all registered)
            scheduler: Task scheduler (default: a private one)
            window_bars: Most recent bars handed to the strategies
        """
        self._store = store
        self._data_source = data_source
        self._notifier = notifier
        self._config = config or MonitoringConfig()
        self._strategies = tuple(strategies) if strategies is not None else default_strategies()
        self._scheduler = scheduler or TaskScheduler()
        self.window_bars = window_bars

        self._entries: Dict[str, WatchEntry] = {}
        self._lock = threading.RLock()

    @property
    def config(self) -> MonitoringConfig:
        with self._lock:
            return self._config

    @property
    def strategies(self) -> tuple:
        return self._strategies

    def is_monitoring(self, instrument_id: str) -> bool:
        with self._lock:
            return instrument_id in self._entries

    # === Lifecycle ===

    def start_monitoring(self, instrument_id: str) -> Optional[EntrySignal]:
        """
        Start watching an instrument and run one check immediately.

        Replaces any existing watch for the same instrument.

        Args:
            instrument_id: ID of a stored instrument with a VCP pattern

        Returns:
            The signal fired by the immediate check, if any

        Raises:
            NotEligible: Instrument missing or without a pattern
            PersistenceFailure: The store could not be read
        """
        record = self._load_eligible(instrument_id)
        entry = self._arm(record)
        logger.info(
            f"Starting entry monitoring for {record.symbol} "
            f"every {entry.interval_minutes:g} min"
        )
        return entry.handle.run_now()

    def stop_monitoring(self, instrument_id: str) -> bool:
        """
        Stop watching an instrument.

        Returns:
            True if a watch was active; stopping an idle instrument is a no-op
        """
        with self._lock:
            entry = self._remove_locked(instrument_id)
        if entry is None:
            return False
        logger.info(f"Stopped monitoring for {entry.symbol} ({instrument_id})")
        return True

    def stop_all_monitoring(self) -> int:
        """Stop every active watch. Returns the number stopped."""
        with self._lock:
            entries = [self._remove_locked(i) for i in list(self._entries)]
        for entry in entries:
            logger.info(f"Stopped monitoring for {entry.symbol} ({entry.instrument_id})")
        return len(entries)

    def update_config(
        self,
        partial: Optional[Mapping[str, Any]] = None,
        **changes: Any,
    ) -> List[Future]:
        """
        Merge changes into the config and restart every active watch.

        Each watch is re-armed at the new interval right away; its
        immediate check runs in the background.

        Returns:
            Futures of the background immediate checks

        Raises:
            ValueError: Unknown field or invalid value; nothing is changed
        """
        updates = dict(partial or {})
        updates.update(changes)

        with self._lock:
            self._config = self._config.merged(updates)
            active = list(self._entries)
        logger.info(f"Monitoring config updated: {updates}")

        futures = []
        for instrument_id in active:
            self.stop_monitoring(instrument_id)
            try:
                record = self._load_eligible(instrument_id)
            except (NotEligible, PersistenceFailure) as e:
                logger.warning(f"Not restarting monitoring for {instrument_id}: {e}")
                continue
            entry = self._arm(record)
            futures.append(self._scheduler.submit(
                entry.handle.run_now,
                description=f"immediate check for {record.symbol}",
            ))
        return futures

    def get_status(self) -> List[Dict[str, Any]]:
        """Active watches as {instrument_id, symbol, interval_minutes, started_at}."""
        with self._lock:
            return [entry.to_status() for entry in self._entries.values()]

    def check_now(self, instrument_id: str) -> Optional[EntrySignal]:
        """
        Run a check for a watched instrument in the calling thread.

        Waits for a check already in progress for the same watch.
        Returns None if the instrument is not being watched.
        """
        with self._lock:
            entry = self._entries.get(instrument_id)
        if entry is None:
            logger.debug(f"check_now ignored, {instrument_id} is not monitored")
            return None
        return entry.handle.run_now()

    def shutdown(self) -> None:
        """Stop all watches and the scheduler's worker pool."""
        self.stop_all_monitoring()
        self._scheduler.shutdown()

    # === Checks ===

    def analyze_timeframe(
        self,
        record: WatchedInstrument,
        timeframe: str,
        config: Optional[MonitoringConfig] = None,
    ) -> Optional[EntrySignal]:
        """
        Run every strategy over fresh data for one timeframe.

        Returns:
            Highest-confidence signal, or None (including when data is
            missing or could not be loaded)
        """
        config = config or self.config
        lookback_days = config.lookback_days_for(timeframe)

        try:
            df = self._data_source.get_series(
                record.symbol,
                timeframe=timeframe,
                lookback_days=lookback_days,
            )
            if df is None or df.empty:
                logger.warning(f"No {timeframe} data for {record.symbol}")
                return None
            window = to_frame(df).tail(self.window_bars)
        except DataUnavailable as e:
            logger.warning(f"No {timeframe} data for {record.symbol}: {e}")
            return None
        except Exception:
            # A broken timeframe counts as no signal; later timeframes still run
            logger.exception(f"Failed to load {timeframe} data for {record.symbol}")
            return None

        signals = []
        for strategy in self._strategies:
            try:
                signals.append(strategy.evaluate(record, window, timeframe))
            except Exception:
                logger.exception(
                    f"Strategy {strategy.kind.value} failed for {record.symbol} ({timeframe})"
                )
        return best_signal(signals)

    def _check_for_entry_signals(self, handle: TaskHandle) -> Optional[EntrySignal]:
        """One recurring check; the task callback registered for each watch."""
        instrument_id = handle.key
        if not self._owns(handle):
            return None

        config = self.config

        try:
            record = self._store.get_instrument(instrument_id)
        except PersistenceFailure as e:
            logger.error(f"Could not load instrument {instrument_id}: {e}")
            return None

        if record is None:
            logger.info(f"Instrument {instrument_id} no longer exists, stopping monitoring")
            self._release(handle)
            return None

        for timeframe in config.timeframes:
            signal = self.analyze_timeframe(record, timeframe, config)
            if signal is not None and signal.confidence >= config.min_confidence:
                return self._handle_entry_signal(record, signal, handle, config)

        logger.debug(f"No qualifying entry signal for {record.symbol}")
        return None

    def _handle_entry_signal(
        self,
        record: WatchedInstrument,
        signal: EntrySignal,
        handle: TaskHandle,
        config: MonitoringConfig,
    ) -> Optional[EntrySignal]:
        # Claiming ends the watch; only the owner of the watch may alert
        if not self._release(handle):
            logger.info(
                f"Discarding {signal.strategy_kind.value} signal for {record.symbol}: "
                f"monitoring was stopped or restarted"
            )
            return None

        logger.info(
            f"Entry signal detected for {record.symbol}: {signal.strategy_kind.value} "
            f"({signal.timeframe}) with {signal.confidence:.0f}% confidence"
        )

        try:
            self._store.record_signal(record.id, signal)
        except PersistenceFailure as e:
            logger.error(f"Failed to record signal for {record.symbol}: {e}")

        if config.alerts_enabled:
            self._send_alert(AlertPayload.for_signal(record, signal))

        logger.info(f"Stopped monitoring for {record.symbol} after entry signal")
        return signal

    def _send_alert(self, payload: AlertPayload) -> bool:
        try:
            delivered = self._notifier.notify(payload)
        except Exception as e:
            logger.error(f"Failed to send alert for {payload.symbol}: {e}")
            return False
        if not delivered:
            logger.warning(f"Alert for {payload.symbol} was not delivered")
        return delivered

    # === Registry ===

    def _load_eligible(self, instrument_id: str) -> WatchedInstrument:
        record = self._store.get_instrument(instrument_id)
        if record is None:
            raise NotEligible(instrument_id, "instrument not found")
        if not record.has_pattern:
            raise NotEligible(instrument_id)
        return record

    def _arm(self, record: WatchedInstrument) -> WatchEntry:
        with self._lock:
            config = self._config
            self._remove_locked(record.id)
            handle = self._scheduler.schedule_recurring(
                record.id,
                config.check_interval_seconds,
                self._check_for_entry_signals,
            )
            entry = WatchEntry(
                instrument_id=record.id,
                symbol=record.symbol,
                interval_minutes=config.check_interval_minutes,
                handle=handle,
            )
            self._entries[record.id] = entry
        return entry

    def _remove_locked(self, instrument_id: str) -> Optional[WatchEntry]:
        entry = self._entries.pop(instrument_id, None)
        if entry is not None:
            self._scheduler.cancel(instrument_id, entry.handle)
            entry.handle.cancel()
        return entry

    def _owns(self, handle: TaskHandle) -> bool:
        with self._lock:
            entry = self._entries.get(handle.key)
            return entry is not None and entry.handle is handle and not handle.cancelled

    def _release(self, handle: TaskHandle) -> bool:
        """Remove the entry if this handle still owns it."""
        with self._lock:
            if not self._owns(handle):
                return False
            self._remove_locked(handle.key)
            return True
