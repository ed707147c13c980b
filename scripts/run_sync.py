"""
Script to reconcile supplier ids in the foreground

Usage:
    python scripts/run_sync.py 12345 67890
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from catalog_sync.service import SyncService
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def run_sync(ids):
    """Create a manual job for ``ids`` and run it to completion"""
    service = SyncService()
    report = await service.sync(ids)

    logger.info(f"Job {report['job_id']} finished: {report['status']}")
    print(json.dumps(report["summary"], indent=2, default=str))
    return report


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reconcile supplier product ids with the marketplace")
    parser.add_argument("ids", nargs="+", help="Supplier product ids")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL for this run")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    report = asyncio.run(run_sync(args.ids))
    return 0 if report["status"] == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
