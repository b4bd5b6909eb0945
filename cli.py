"""Command-line driver.

Usage::

    payments-engine transactions.csv > accounts.csv

Reads every transaction of the CSV file, applies it to a fresh ledger and
prints the final balances to stdout. Rejected transactions are logged to
stderr and do not change the exit status; an unreadable input file does.
"""

import argparse
import asyncio
import csv
import sys
from typing import List, Optional, TextIO

import structlog

from config import configure_logging, get_settings
from decoder import read_transactions
from report import write_report
from services import PaymentsEngine, TransactionService

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payments-engine",
        description="Apply a CSV stream of transactions and print client balances.",
    )
    parser.add_argument(
        "file",
        metavar="TRANSACTIONS_FILE.csv",
        help="CSV file with type,client,tx,amount columns",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ...)",
    )
    return parser


def run(path: str, out: TextIO) -> int:
    service = TransactionService(PaymentsEngine())

    try:
        with open(path, newline="", encoding="utf-8") as stream:
            summary = asyncio.run(service.process_stream(read_transactions(stream)))
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Cannot read transactions file", path=path, error=str(e))
        return 1
    except csv.Error as e:
        logger.error("Transactions file is not valid CSV", path=path, error=str(e))
        return 1

    write_report(service.engine.snapshot(), out)
    logger.info(
        "Report written",
        accounts=len(service.engine.ledger),
        processed=summary.processed,
        rejected=summary.rejected
    )
    return 0


def main(argv: Optional[List[str]] = None, out: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    configure_logging(settings)

    if not args.file.strip():
        logger.error("Empty transactions file name")
        return 1

    return run(args.file.strip(), out if out is not None else sys.stdout)


if __name__ == "__main__":
    sys.exit(main())
