#!/usr/bin/env python3

"""
Re-run account deletion cleanup from the command line.

    python scripts/retry_account_cleanup.py <user_id>   # one account
    python scripts/retry_account_cleanup.py --failed    # every PartialFailure job
"""

import argparse
import logging
import sys

from marketindex.core.storage import media_storage
from marketindex.modules.cleanup.services.orchestrator import retry_failed_cleanups, run_account_cleanup

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def main() -> int:
    parser = argparse.ArgumentParser(description="Re-run account deletion cleanup")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("user_id", nargs="?", help="ID of the deleted account")
    target.add_argument("--failed", action="store_true", help="Retry every partially failed cleanup job")
    args = parser.parse_args()

    if args.failed:
        reports = retry_failed_cleanups(storage=media_storage)
    else:
        reports = [run_account_cleanup(args.user_id, storage=media_storage)]

    failed = 0
    for report in reports:
        if report.done:
            logger.info(f"{report.user_id}: done")
        else:
            failed += 1
            logger.error(f"{report.user_id}: failed at {', '.join(report.failed_steps)} {report.errors}")

    logger.info(f"{len(reports)} cleanup job(s) run, {failed} still failing")
    return 1 if failed else 0

if __name__ == "__main__":
    sys.exit(main())
