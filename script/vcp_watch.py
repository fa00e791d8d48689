#!/usr/bin/env python3
"""
VCP Watch CLI

Scans stocks for VCP (Volatility Contraction Pattern) setups and optionally
keeps monitoring the matches for entry signals until interrupted.

Usage:
    python script/vcp_watch.py --symbols AAPL,MSFT,NVDA         # Scan specific symbols
    python script/vcp_watch.py -w watchlist.txt                 # Scan from watchlist file
    python script/vcp_watch.py -w watchlist.txt --monitor       # Scan, then watch matches
    python script/vcp_watch.py --symbols NVDA --monitor --interval 5 --timeframes 1h
    python script/vcp_watch.py --rank-etfs                      # Rank popular ETFs
    python script/vcp_watch.py -w xlk_holdings.txt --etf XLK    # Scan an ETF's holdings
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from src.vcpwatch import (
    ETFPerformance,
    ETFRecommendation,
    HoldingsScan,
    MonitoringConfig,
    NotEligible,
    SystemConfig,
    WatchedInstrument,
    WatchSystem,
)


logger = logging.getLogger("vcp_watch")


def load_watchlist(filepath: str) -> List[str]:
    """Load stock symbols from a watchlist file.

    Supports comma-separated, line-separated or mixed content.
    Text after '#' on a line is ignored.

    Args:
        filepath: Path to the watchlist file

    Returns:
        Unique symbols in file order
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Watchlist file not found: {filepath}")

    symbols = []
    for line in path.read_text().splitlines():
        line = line.split("#")[0]
        symbols.extend(s.strip().upper() for s in line.split(",") if s.strip())

    return list(dict.fromkeys(symbols))


def parse_symbols(value: str) -> List[str]:
    return list(dict.fromkeys(s.strip().upper() for s in value.split(",") if s.strip()))


def print_results(results: Dict[str, Optional[WatchedInstrument]]) -> None:
    """Print a scan summary table."""
    found = sorted(
        (r for r in results.values() if r is not None and r.has_pattern),
        key=lambda r: r.pattern_score,
        reverse=True,
    )
    failed = [s for s, r in results.items() if r is None]

    print()
    print("=" * 70)
    print("SCAN COMPLETE")
    print("=" * 70)

    if found:
        print(f"{'Symbol':<8} {'Score':<6} {'Price':<10} {'Best entry':<28}")
        print("-" * 70)
        for record in found:
            entries = record.pattern_snapshot.get("entry_points") or []
            best = ""
            if entries:
                best = f"{entries[0]['kind']} ${entries[0]['price']:.2f} ({entries[0]['confidence']:.0f}%)"
            price = f"${record.last_price:.2f}" if record.last_price is not None else "-"
            print(f"{record.symbol:<8} {record.pattern_score:<6.0f} {price:<10} {best:<28}")
        print()

    print(f"  Total symbols:      {len(results)}")
    print(f"  Failed to load:     {len(failed)}")
    print(f"  VCP patterns found: {len(found)}")
    print()


def save_results(results: Dict[str, Optional[WatchedInstrument]], output: str) -> Path:
    """Write scan results as JSON."""
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "scan_date": datetime.now().isoformat(),
        "symbols_total": len(results),
        "patterns_found": sum(1 for r in results.values() if r is not None and r.has_pattern),
        "results": {s: (r.to_dict() if r else None) for s, r in results.items()},
    }
    with open(path, "w") as f:
        json.dump(payload, f, indent=2)
    return path


def print_etf_ranking(ranking: List[ETFPerformance], recommendation: Optional[ETFRecommendation]) -> None:
    """Print ETFs by period return with the recommendation."""
    print()
    print("=" * 70)
    print("ETF RANKING")
    print("=" * 70)

    if not ranking:
        print("No ETF data available.")
        print()
        return

    print(f"{'Symbol':<8} {'Return':<10} {'Risk':<6} {'Price':<10}")
    print("-" * 70)
    for performance in ranking:
        print(
            f"{performance.symbol:<8} {performance.performance_pct:>+7.2f}%  "
            f"{performance.risk_score:<6} ${performance.price:<9.2f}"
        )
    print()

    if recommendation is not None:
        print(f"Recommended: {recommendation.etf.symbol} ({recommendation.confidence:.0f}% confidence)")
        print(f"  {recommendation.reason}")
        print()


def run_monitor(system: WatchSystem, records: List[WatchedInstrument]) -> None:
    """Monitor pattern instruments until every watch ends or Ctrl-C."""
    for record in records:
        try:
            signal = system.start_monitoring(record.id)
        except NotEligible as e:
            logger.warning(str(e))
            continue
        if signal is not None:
            logger.info(f"{record.symbol}: entry signal on first check")

    stopped = threading.Event()
    print(f"Monitoring {len(system.get_monitoring_status())} symbols. Press Ctrl-C to stop.")
    try:
        while system.get_monitoring_status():
            stopped.wait(5.0)
        print("All watches ended.")
    except KeyboardInterrupt:
        print()
        print("Stopping monitors...")
    finally:
        system.shutdown()


def main():
    parser = argparse.ArgumentParser(
        description="VCP Watch - Scan for Volatility Contraction Patterns and monitor entry signals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --symbols AAPL,MSFT,NVDA          # Scan specific symbols
  %(prog)s -w watchlist.txt                  # Scan symbols from watchlist file
  %(prog)s -w watchlist.txt --monitor        # Monitor matches for entry signals
  %(prog)s --symbols NVDA --monitor --min-confidence 80 --timeframes 1h,4h
  %(prog)s --rank-etfs SPY,QQQ,XLK,XLE --period 20
  %(prog)s -w xlk_holdings.txt --etf XLK     # Scan holdings, show the ETF return

Watchlist file format (comma or line separated):
  AAPL, MSFT, NVDA
  # This is a comment
  TSLA
        """,
    )

    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument(
        "-w", "--watchlist",
        type=str,
        help="Path to watchlist file with stock symbols",
    )
    input_group.add_argument(
        "--symbols",
        type=str,
        help="Comma-separated list of stock symbols to scan",
    )
    input_group.add_argument(
        "--rank-etfs",
        nargs="?",
        const="",
        metavar="SYMBOLS",
        help="Rank ETFs by return (comma-separated, default: popular ETFs) and exit",
    )

    parser.add_argument(
        "--etf",
        type=str,
        default=None,
        help="Treat the scanned symbols as holdings of this ETF",
    )
    parser.add_argument(
        "--period",
        type=int,
        default=30,
        help="Bars the ETF return is measured over (default: 30)",
    )

    parser.add_argument(
        "--scan-name",
        type=str,
        default="cli",
        help="Label stored with each scanned record (default: cli)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database path (default: in-memory store)",
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default=None,
        help="Write scan results to this JSON file",
    )
    parser.add_argument(
        "--monitor",
        action="store_true",
        help="Monitor pattern matches for entry signals until Ctrl-C",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=15.0,
        help="Minutes between entry-signal checks (default: 15)",
    )
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=70.0,
        help="Minimum signal confidence that fires an alert (default: 70)",
    )
    parser.add_argument(
        "--timeframes",
        type=str,
        default="1h,4h",
        help="Comma-separated timeframes checked in order (default: 1h,4h)",
    )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging",
    )
    verbosity.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Quiet mode - warnings and errors only",
    )

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("yfinance").setLevel(logging.WARNING)

    timeframes = [t.strip() for t in args.timeframes.split(",") if t.strip()]
    try:
        monitoring_config = MonitoringConfig(
            check_interval_minutes=args.interval,
            min_confidence=args.min_confidence,
            timeframes=tuple(timeframes),
        )
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    config = SystemConfig(
        db_path=args.db or "data/vcpwatch.db",
        use_memory_db=args.db is None,
        monitoring_config=monitoring_config,
        enable_console_notifications=not args.quiet,
        enable_log_notifications=args.quiet,
        notify_on_pattern=args.monitor,
    )

    if args.rank_etfs is not None:
        system = WatchSystem(config)
        etfs = parse_symbols(args.rank_etfs) or None
        ranking = system.rank_etfs(etfs, period_days=args.period)
        print_etf_ranking(ranking, system.etf_scanner.recommend_from(ranking))
        system.shutdown()
        return

    # Determine symbols to scan
    if args.watchlist:
        try:
            symbols = load_watchlist(args.watchlist)
        except FileNotFoundError as e:
            print(f"Error: {e}")
            sys.exit(1)
        if not symbols:
            print(f"Error: No symbols found in watchlist: {args.watchlist}")
            sys.exit(1)
    else:
        symbols = parse_symbols(args.symbols)
        if not symbols:
            print("Error: No valid symbols provided")
            sys.exit(1)

    system = WatchSystem(config)

    if args.etf:
        etf = args.etf.strip().upper()
        print(f"Scanning {len(symbols)} holdings of {etf}...")
        scan: HoldingsScan = system.scan_holdings(
            etf,
            symbols,
            scan_name=args.scan_name if args.scan_name != "cli" else "",
            period_days=args.period,
        )
        print(f"{etf} return over {args.period} bars: {scan.etf_performance_pct:+.2f}%")
        results = scan.records
    else:
        print(f"Scanning {len(symbols)} symbols...")
        results = system.scan_symbols(symbols, scan_name=args.scan_name)

    if not args.quiet:
        print_results(results)

    if args.output:
        path = save_results(results, args.output)
        print(f"Results saved: {path}")

    if not args.monitor:
        system.shutdown()
        return

    matches = [r for r in results.values() if r is not None and r.has_pattern]
    if not matches:
        print("No VCP patterns to monitor.")
        system.shutdown()
        return

    run_monitor(system, matches)


if __name__ == "__main__":
    main()
