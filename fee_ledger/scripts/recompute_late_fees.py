"""
Recompute accrued late fees on every open ledger.

Safe to run at any frequency: accrual is re-derived from the as-of date, so repeated
runs for the same date leave ledgers unchanged. Exit status is 1 if any ledger failed.
Usage: python -m fee_ledger.scripts.recompute_late_fees [--as-of YYYY-MM-DD] [--period-ref UUID]
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import List, Optional
from uuid import UUID

from fee_ledger.api.v1.ledgers import service
from fee_ledger.core.logging import configure_logging
from fee_ledger.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recompute late fees across all open student ledgers.")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Accrual date (default: today)")
    parser.add_argument("--period-ref", type=UUID, default=None, help="Limit to one academic period")
    return parser.parse_args(argv)


async def recompute_late_fees(as_of: Optional[date], period_ref: Optional[UUID]) -> int:
    """Run the batch; returns the number of ledgers that failed."""
    async with AsyncSessionLocal() as session:
        result = await service.recompute_all_late_fees(session, as_of=as_of, period_ref=period_ref)
    for failure in result.failures:
        logger.warning("Ledger %s failed: [%s] %s", failure.ref, failure.code, failure.message)
    logger.info("Done. %d ledger(s) recomputed, %d failed.", result.succeeded, result.failed)
    return result.failed


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging()
    args = parse_args(argv)
    failed = asyncio.run(recompute_late_fees(args.as_of, args.period_ref))
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
