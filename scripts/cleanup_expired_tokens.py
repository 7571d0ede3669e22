#!/usr/bin/env python3
"""
Expired Token Cleanup

Marks expired tokens as revoked, deletes every revoked or expired token,
and purges deny-list entries for access tokens that have since expired.
Safe to run concurrently with the API.

Usage:
    # Run the sweep (default - for cron)
    python3 scripts/cleanup_expired_tokens.py

    # Report what would be cleaned, change nothing
    python3 scripts/cleanup_expired_tokens.py --dry-run

    # Verbose logging
    python3 scripts/cleanup_expired_tokens.py --verbose

Crontab example (hourly):
    0 * * * * cd /app && python3 scripts/cleanup_expired_tokens.py
"""

import argparse
import asyncio
import sys

from app.db.session import close_engines, session_scope
from app.models.domain import CleanupResult
from app.observability.logging import get_logger, setup_logging
from app.observability.tracing import setup_tracing, trace_operation
from app.services.tokens import TokenService

logger = get_logger("cleanup_expired_tokens")


async def run_cleanup(dry_run: bool = False) -> CleanupResult:
    """Run one sweep. With dry_run the counts are computed and nothing is written."""
    with trace_operation("token_cleanup", dry_run=dry_run) as span:
        try:
            async with session_scope() as session:
                tokens = TokenService(session)
                if dry_run:
                    result = await tokens.preview_cleanup()
                else:
                    result = await tokens.cleanup_expired()
            span.set_attribute("tokens.expired_marked", result.expired_marked)
            span.set_attribute("tokens.deleted", result.deleted)
            span.set_attribute("tokens.deny_list_purged", result.deny_list_purged)
            return result
        finally:
            await close_engines()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Clean up expired and revoked tokens")
    parser.add_argument(
        "--dry-run", action="store_true", help="Count affected tokens without changing them"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    setup_tracing()

    try:
        result = asyncio.run(run_cleanup(dry_run=args.dry_run))
    except Exception as e:
        logger.error("token_cleanup_failed", error=str(e), error_type=type(e).__name__)
        return 1

    logger.info(
        "token_cleanup_finished",
        dry_run=args.dry_run,
        expired_marked=result.expired_marked,
        deleted=result.deleted,
        deny_list_purged=result.deny_list_purged,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
