#!/usr/bin/env python3
"""
Gamma Paper Engine - Main CLI Interface

Replays recorded trade/tick scenarios through the paper trading engine
and shows the effective risk configuration.
"""

import sys
import argparse
from gamma_paper.config import get_settings
from gamma_paper.replay import run_replay
from gamma_paper.utils import setup_logger, format_currency, format_percentage
from loguru import logger


def cmd_replay(args):
    """Replay a scenario file and print the account summary"""
    settings = get_settings()
    report = run_replay(args.scenario, settings, force_close=not args.keep_open)
    summary = report.summary

    print(f"\n{'='*70}")
    print(f"{'REPLAY SUMMARY':^70}")
    print(f"{'='*70}\n")

    print(f"Positions opened: {len(report.position_ids)}")
    print(f"Trades rejected:  {len(report.rejected)}")
    print(f"Ticks applied:    {report.ticks_applied}")
    print(f"{'-'*70}")
    print(f"Initial Balance:  {format_currency(summary['initial_balance'])}")
    print(f"Current Balance:  {format_currency(summary['current_balance'])}")
    print(f"Total P&L:        {format_currency(summary['total_pnl'])} "
          f"({summary['total_pnl_percent']:+.2f}%)")
    print(f"Max Drawdown:     {format_currency(summary['max_drawdown'])}")

    perf = summary["performance"]
    print(f"Win Rate:         {format_percentage(perf['win_rate'])}")
    print(f"Profit Factor:    {perf['profit_factor']:.2f}")
    print(f"Sharpe Ratio:     {perf['sharpe_ratio']:.2f}")

    if report.rejected:
        print(f"\n{'Signal':<20} {'Rejection reason'}")
        print(f"{'-'*70}")
        for rejection in report.rejected:
            print(f"{str(rejection['signal_id']):<20} {rejection['reason']}")

    if report.events:
        print(f"\n{'Event':<25} {'Count':>10}")
        print(f"{'-'*70}")
        for name, count in sorted(report.events.items()):
            print(f"{name:<25} {count:>10}")


def cmd_limits(args):
    """Show the configured risk limits"""
    settings = get_settings()

    print(f"\n{'='*70}")
    print(f"{'RISK LIMITS':^70}")
    print(f"{'='*70}\n")

    print(f"Max Portfolio Heat:      {format_percentage(settings.max_portfolio_heat)}")
    print(f"Max Position Size:       {format_percentage(settings.max_position_size)}")
    print(f"Max Ticker Concentration:{format_percentage(settings.max_ticker_concentration):>8}")
    print(f"Heat Reduction:          {format_percentage(settings.heat_reduction_threshold)}")
    print(f"Emergency Exit:          {format_percentage(settings.emergency_exit_threshold)}")
    print(f"Consecutive Loss Limit:  {settings.consecutive_loss_limit}")
    print(f"Drawdown Protection:     {format_percentage(settings.drawdown_protection_threshold)}")
    print(f"Profit Target / Stop:    {settings.profit_target_percent}% / {settings.stop_loss_percent}%")
    print(f"Trailing Stop:           {settings.trailing_stop_percent}%")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Gamma Paper Engine - options paper trading simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to PAPER_LOG_LEVEL)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    replay_parser = subparsers.add_parser("replay", help="Replay a JSON scenario")
    replay_parser.add_argument("scenario", help="Path to the scenario file")
    replay_parser.add_argument(
        "--keep-open",
        action="store_true",
        help="Snapshot open positions at the end instead of closing them"
    )

    subparsers.add_parser("limits", help="Show configured risk limits")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    settings = get_settings()
    setup_logger(log_file=settings.log_file, log_level=args.log_level or settings.log_level)

    try:
        if args.command == "replay":
            cmd_replay(args)
        elif args.command == "limits":
            cmd_limits(args)

    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
