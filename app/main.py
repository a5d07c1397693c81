"""
Command Line Entry Point for Expense Ledger

Usage:
    expense-ledger check                # validate configuration
    expense-ledger run                  # run every stage in order
    expense-ledger run analysis         # run a single stage

The tracker is built against Google Sheets. Source clients (email,
banking API, Splitwise) are wired in by the deployment; stages without
one are reported as not configured.
"""

import argparse
import asyncio
import sys

import structlog

from expense_ledger.audit import setup_logging
from expense_ledger.config import get_settings, validate_all_settings
from expense_ledger.orchestrator import STAGE_ORDER, RunStage, create_tracker
from expense_ledger.services.storage import StorageError


logger = structlog.get_logger(__name__)


def check_configuration() -> int:
    results = validate_all_settings()
    ok = True
    for name in ("google_sheets", "gemini", "exchange_rates", "app"):
        if results.get(name):
            print(f"  OK       {name}")
        else:
            ok = False
            print(f"  MISSING  {name}: {results.get(f'{name}_error', 'unknown error')}")
    return 0 if ok else 1


async def run(stage: str = None, use_ai: bool = True) -> int:
    tracker = create_tracker(use_ai=use_ai)
    try:
        if stage:
            reports = [await tracker.run_stage(RunStage(stage))]
        else:
            reports = await tracker.run_all()
    except StorageError as e:
        logger.error("ledger_unavailable", error=str(e))
        print(f"Ledger unavailable: {e}", file=sys.stderr)
        return 2

    for report in reports:
        print(report.summary())
    return 1 if any(report.aborted for report in reports) else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Consolidate, categorize and settle movements in the expense ledger.",
        epilog="Configuration is read from environment variables and .env.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at debug level",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("check", help="Validate configuration and exit")

    run_parser = commands.add_parser("run", help="Run the ledger stages")
    run_parser.add_argument(
        "stage",
        nargs="?",
        choices=[stage.value for stage in STAGE_ORDER],
        help="Run only this stage (default: all, in order)",
    )
    run_parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Don't create the AI agent; AI stages are skipped",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug or get_settings().app.debug_mode)

    if args.command == "check":
        return check_configuration()
    return asyncio.run(run(stage=args.stage, use_ai=not args.no_ai))


if __name__ == "__main__":
    sys.exit(main())
