"""Recompute organization usage counters from member counters.

Run after a manual data fix or if counters are suspected to have drifted:

    python -m scripts.recompute_usage            # report differences only
    python -m scripts.recompute_usage --apply    # write corrected totals
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from src.core.logging_config import setup_logging
from src.db.session import get_engine, get_session_factory
from src.repositories.member_repo import MemberRepo
from src.repositories.subscription_repo import SubscriptionRepo
from src.repositories.usage_repo import UsageRepo


logger = logging.getLogger("recompute_usage")


async def recompute(apply: bool) -> int:
    session_factory = get_session_factory()
    async with session_factory() as session:
        org_ids = await SubscriptionRepo(session).all_ids()

    drifted = 0
    for org_id in org_ids:
        async with session_factory() as session:
            async with session.begin():
                subscription = await SubscriptionRepo(session).get(org_id, for_update=True)
                if subscription is None:
                    continue
                subjects, students, members = await MemberRepo(session).totals_for_org(org_id)
                current = (
                    subscription.current_subjects,
                    subscription.current_students,
                    subscription.member_count,
                )
                if current == (subjects, students, members):
                    continue
                drifted += 1
                logger.warning(
                    f"Org {org_id}: stored {current}, members sum to "
                    f"{(subjects, students, members)}"
                )
                if apply:
                    await UsageRepo(session).set_org_totals(org_id, subjects, students, members)

    logger.info(
        f"Checked {len(org_ids)} organizations, {drifted} drifted"
        + (" and corrected" if apply and drifted else "")
    )
    return drifted


async def _main(apply: bool) -> int:
    try:
        await recompute(apply)
    finally:
        await get_engine().dispose()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--apply", action="store_true", help="write corrected totals")
    args = parser.parse_args()
    setup_logging()
    sys.exit(asyncio.run(_main(args.apply)))
