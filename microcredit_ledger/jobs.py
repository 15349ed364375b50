"""
Batch Job Entry Point

Command line runner for the periodic ledger jobs, meant to be scheduled from
cron (accrual daily at midnight, reminders daily at 08:00):

    python -m microcredit_ledger.jobs accrue
    python -m microcredit_ledger.jobs remind
    python -m microcredit_ledger.jobs risk

Each command prints a JSON summary on stdout.
"""

import argparse
import json
import sys
from typing import List, Optional

from .config import get_config
from .logging_config import setup_logging, get_logger
from .system import LedgerSystem

logger = get_logger("microcredit.jobs")

COMMANDS = ("accrue", "remind", "risk")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="microcredit-jobs",
        description="Run microcredit ledger batch jobs"
    )
    parser.add_argument("command", choices=COMMANDS,
                        help="accrue: daily penalties, remind: due-date reminders, "
                             "risk: portfolio risk report")
    parser.add_argument("--database-url", default=None,
                        help="Override MICROCREDIT_DATABASE_URL")
    return parser


def run_command(system: LedgerSystem, command: str) -> dict:
    if command == "accrue":
        return system.accrual_engine.run_daily_accrual().to_dict()
    if command == "remind":
        return system.accrual_engine.run_payment_reminders().to_dict()
    if command == "risk":
        return system.risk_classifier.classify_portfolio().to_dict()
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None, system: Optional[LedgerSystem] = None) -> int:
    args = build_parser().parse_args(argv)

    config = get_config()
    if args.database_url:
        config = config.model_copy(update={"database_url": args.database_url})
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    system = system or LedgerSystem(config)
    try:
        summary = run_command(system, args.command)
    finally:
        system.close()

    print(json.dumps(summary, indent=2, default=str))
    failures = summary.get("failures") or []
    if failures:
        logger.error(f"Job {args.command} finished with {len(failures)} failed loans")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
