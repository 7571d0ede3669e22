#!/usr/bin/env python3
"""
Monthly Usage Quota Reset

Zeroes usage_count for every active client whose reset_date has passed and
moves reset_date to the first day of the next month.

Usage:
    python3 scripts/reset_quotas.py
    python3 scripts/reset_quotas.py --verbose

Crontab example (daily, just after midnight UTC):
    5 0 * * * cd /app && python3 scripts/reset_quotas.py
"""

import argparse
import asyncio
import sys

from app.db.session import close_engines, session_scope
from app.observability.logging import get_logger, setup_logging
from app.services.credentials import CredentialStore

logger = get_logger("reset_quotas")


async def run_reset() -> int:
    try:
        async with session_scope() as session:
            return await CredentialStore(session).reset_due_quotas()
    finally:
        await close_engines()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reset monthly client usage quotas")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)

    try:
        count = asyncio.run(run_reset())
    except Exception as e:
        logger.error("quota_reset_failed", error=str(e), error_type=type(e).__name__)
        return 1

    logger.info("quota_reset_finished", clients_reset=count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
