"""Batch entrypoint that runs synchronization jobs outside the HTTP service."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from dotenv import load_dotenv

from jobs.config import JOB_GROUPS, TARGET_JOBS, JobConfig, iter_jobs
from jobs.settings import Settings, load_settings
from jobs.sync import JobOutcome, run_job_group, run_sync_job
from storage.db import connect

load_dotenv()

logger = logging.getLogger(__name__)


async def load_all_async(
    jobs: Iterable[JobConfig] | None = None, settings: Settings | None = None
) -> list[JobOutcome]:
    """Run ``jobs`` sequentially against one connection, each audited separately."""

    settings = settings or load_settings()
    jobs = tuple(jobs) if jobs is not None else TARGET_JOBS
    outcomes: list[JobOutcome] = []
    conn = connect(settings.db_path)
    try:
        for job in jobs:
            logger.info("Running %s (%s)...", job.key, job.data_source)
            outcome = await run_sync_job(conn, job, settings)
            if not outcome.success:
                logger.error("%s failed: %s", job.key, outcome.error_details)
            outcomes.append(outcome)
        return outcomes
    finally:
        conn.close()


async def run_group_async(group_key: str, settings: Settings | None = None) -> list[JobOutcome]:
    settings = settings or load_settings()
    conn = connect(settings.db_path)
    try:
        return await run_job_group(conn, iter_jobs(JOB_GROUPS[group_key]), settings)
    finally:
        conn.close()


def main(jobs: Iterable[JobConfig] | None = None) -> int:
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    outcomes = asyncio.run(load_all_async(jobs, settings))
    failed = [outcome.job_key for outcome in outcomes if not outcome.success]
    logger.info(
        "Sync finished (jobs=%s, new records=%s, failed=%s).",
        len(outcomes),
        sum(outcome.new_records for outcome in outcomes),
        ", ".join(failed) or "none",
    )
    return 1 if failed else 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
