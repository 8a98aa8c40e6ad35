"""Run one lifecycle job once, for use from an external cron.

    python -m src.scheduler.run renewal_processor
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys

from src.core.logging_config import setup_logging
from src.db.session import get_engine
from src.scheduler.jobs import build_job
from src.services.lifecycle import JOBS


async def _run(name: str) -> int:
    try:
        report = await build_job(name).run()
    finally:
        await get_engine().dispose()
    print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.failed else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a subscription lifecycle job once.")
    parser.add_argument("job", choices=sorted(JOBS))
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    return asyncio.run(_run(args.job))


if __name__ == "__main__":
    sys.exit(main())
