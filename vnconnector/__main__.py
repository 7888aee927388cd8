"""
Command-line entry point.

    python -m vnconnector session [--at 2026-01-05T10:00]
    python -m vnconnector markets [--symbol SSI]
    python -m vnconnector candles SSI --timeframe 1d --limit 30
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from vnconnector.brokers.factory import ExchangeId, create_exchange
from vnconnector.config import ConnectorConfig, load_config
from vnconnector.data.candles import TIMEFRAMES, candles_to_frame
from vnconnector.errors import ConnectorError
from vnconnector.logging import get_logger, LogStream, setup_logging
from vnconnector.time.session import SessionClock


def _parse_args(argv: List[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="vnconnector",
        description="SSI FastConnect connector utilities.",
    )
    p.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config"),
        help="Directory holding config.yaml and .env.local (default: ./config)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Console log level (default: from config)",
    )
    sub = p.add_subparsers(dest="command", required=True)

    session = sub.add_parser("session", help="Print the trading session and allowed order types")
    session.add_argument(
        "--at",
        type=datetime.fromisoformat,
        default=None,
        help="ISO timestamp; naive values are market-local (default: now)",
    )

    markets = sub.add_parser("markets", help="Load the market catalog and print per-segment counts")
    markets.add_argument("--symbol", default=None, help="Resolve one symbol / raw id / ticker")

    candles = sub.add_parser("candles", help="Fetch candles for a symbol")
    candles.add_argument("symbol")
    candles.add_argument("--timeframe", "-t", default="1d", choices=list(TIMEFRAMES))
    candles.add_argument("--limit", "-n", type=int, default=None)

    return p.parse_args(argv)


def _cmd_session(config: ConnectorConfig, at: Optional[datetime]) -> int:
    clock = SessionClock(config.session)
    moment = at or datetime.now(clock.tz)
    state = clock.session_at(moment)
    allowed = sorted(t.value for t in clock.allowed_order_types_for(state))
    print(f"time:     {clock.to_local(moment).isoformat()}")
    print(f"session:  {state.value}")
    print(f"allowed:  {', '.join(allowed) or '-'}")
    print(f"next:     {clock.next_transition(moment).isoformat()}")
    return 0


def _cmd_markets(config: ConnectorConfig, symbol: Optional[str]) -> int:
    exchange = create_exchange(ExchangeId.VIETNAM, config)
    markets = exchange.load_markets()
    if symbol:
        inst = exchange.market(symbol)
        print(f"{inst.symbol}  raw_id={inst.raw_id}  tick={inst.price_tick}  lot={inst.lot_size}  "
              f"ref={inst.reference_price}  floor={inst.floor}  ceiling={inst.ceiling}")
        return 0
    counts = {}
    for inst in markets.values():
        counts[inst.segment] = counts.get(inst.segment, 0) + 1
    for segment in config.catalog.segments:
        print(f"{segment:6s} {counts.get(segment, 0)}")
    print(f"total  {len(markets)}")
    return 0


def _cmd_candles(config: ConnectorConfig, symbol: str, timeframe: str, limit: Optional[int]) -> int:
    exchange = create_exchange(ExchangeId.VIETNAM, config)
    frame = candles_to_frame(exchange.fetch_ohlcv(symbol, timeframe, limit=limit))
    print(frame.to_string())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return 1

    log_cfg = config.logging
    setup_logging(
        log_dir=log_cfg.log_dir,
        log_level=log_cfg.log_level.value,
        console_level=args.log_level or log_cfg.console_level.value,
        json_logs=log_cfg.json_logs,
        max_bytes=log_cfg.max_bytes,
        backup_count=log_cfg.backup_count,
        file_logging=log_cfg.file_logging,
    )

    try:
        if args.command == "session":
            return _cmd_session(config, args.at)
        if args.command == "markets":
            return _cmd_markets(config, args.symbol)
        return _cmd_candles(config, args.symbol, args.timeframe, args.limit)
    except ConnectorError as e:
        get_logger(LogStream.SYSTEM).error("Command failed", extra={"command": args.command, "error": str(e)})
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
