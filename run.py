#!/usr/bin/env python
"""
Decision Engine - Bar Replay

Feeds a CSV of OHLCV bars (time in epoch ms) through the orchestrator and
prints every emitted event as one JSON line.

    python run.py bars.csv --symbol SPY --timeframe 1m --warmup 300
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from decision_engine import (
    ConfigurationError, HistoryBundle, Orchestrator, Verification, VerificationAction,
    load_config,
)
from decision_engine.aggregation import frame_to_bars

logger = logging.getLogger("decision_engine.replay")


def auto_approve(request):
    """Approve every candidate at its own score (replay / dry runs only)"""
    score = request.candidate.score.total
    return Verification(VerificationAction.APPROVE_FULL, probability=score,
                        reasoning="auto-approved replay")


def load_frame(path: Path) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.columns = [c.lower() for c in df.columns]
    time_col = 'ts' if 'ts' in df.columns else 'time'
    if time_col not in df.columns:
        raise ValueError(f"{path} has no time or ts column")
    return df.sort_values(time_col).reset_index(drop=True)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='Replay OHLCV bars through the decision engine'
    )
    parser.add_argument('csv', type=Path, help='CSV with time/open/high/low/close/volume columns')
    parser.add_argument('--symbol', type=str, default='SPY', help='Symbol to tag bars with')
    parser.add_argument(
        '--timeframe',
        type=str,
        default='5m',
        help='Timeframe of the bars in the file'
    )
    parser.add_argument('--config', type=str, help='Path to config.yaml')
    parser.add_argument(
        '--warmup',
        type=int,
        default=0,
        help='Seed this many leading bars as history (no events)'
    )
    parser.add_argument(
        '--auto-approve',
        action='store_true',
        help='Approve every candidate instead of running without a verifier'
    )
    parser.add_argument(
        '--snapshot',
        type=Path,
        help='Write an execution snapshot here after the replay'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='warning',
        choices=['debug', 'info', 'warning', 'error', 'critical'],
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        df = load_frame(args.csv)
        warmup_df, live_df = df.iloc[:args.warmup], df.iloc[args.warmup:]
        live = frame_to_bars(live_df)
    except (OSError, ValueError) as e:
        print(f"Error reading {args.csv}: {e}", file=sys.stderr)
        sys.exit(1)

    orch = Orchestrator(config, instance_id=f"replay-{args.symbol}",
                        verifier=auto_approve if args.auto_approve else None)

    seeded = 0
    if len(warmup_df):
        bundle = HistoryBundle.from_frames(args.symbol, {args.timeframe: warmup_df},
                                           source=str(args.csv))
        seeded = orch.warmup_history(bundle)

    emitted = 0
    for bar in live:
        for event in orch.process_tick(args.symbol, bar, args.timeframe):
            print(json.dumps(event.to_dict(), default=str))
            emitted += 1

    diag = orch.get_last_diagnostics(args.symbol)
    logger.info(
        f"Replayed {len(live)} bars ({len(warmup_df)} warm-up, {seeded} seeded): {emitted} events, "
        f"final phase {orch.get_state(args.symbol).phase.value}, "
        f"rejected {diag.rejected_bars if diag else 0}"
    )

    if args.snapshot:
        last_ts = live[-1].ts if live else None
        args.snapshot.write_text(json.dumps(orch.export_snapshot(now_ts=last_ts), indent=2))
        logger.info(f"Snapshot written to {args.snapshot}")


if __name__ == '__main__':
    main()
