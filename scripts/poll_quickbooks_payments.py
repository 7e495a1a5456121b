#!/usr/bin/env python3
"""
Poll QuickBooks Payments Script.

Imports payments recorded in QuickBooks for every user whose poll interval
has elapsed. Meant to be run from cron, e.g. every 15 minutes.

Usage:
    # Poll every due connection
    python -m scripts.poll_quickbooks_payments

    # Poll one user now, ignoring the interval
    python -m scripts.poll_quickbooks_payments --user-id USER_ID
"""
import asyncio
import argparse
import logging

from sleekinvoices.database import AsyncSessionLocal
from sleekinvoices.quickbooks.jobs import poll_due_payments


async def main():
    parser = argparse.ArgumentParser(
        description="Import new payments from QuickBooks"
    )
    parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        help="Only poll for a specific user ID"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async with AsyncSessionLocal() as db:
        results = await poll_due_payments(db, user_id=args.user_id)

    print("\n" + "=" * 60)
    print("QUICKBOOKS PAYMENT POLL")
    print("=" * 60)

    if not results:
        print("\nNo connections due for polling.")

    for user_id, result in results.items():
        status = "✓" if result.success else "✗"
        print(f"  {status} {user_id}: {result.synced} imported")
        for error in result.errors:
            print(f"      - {error}")

    print("\n" + "=" * 60 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
