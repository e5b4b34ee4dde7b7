"""Command-line entrypoint for batch jobs."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from typing import Iterable

from jobs.config import JOB_GROUPS, TARGET_JOBS, JobConfig, get_job_by_key
from jobs.load_all import main as run_load_all
from jobs.load_all import run_group_async
from jobs.settings import load_settings


def _format_job(job: JobConfig) -> str:
    return (
        f"{job.key}: table={job.series.table} source='{job.data_source}' "
        f"mode={job.series.write_mode.value} {job.description}"
    ).rstrip()


def _resolve_jobs_from_cli(keys: Iterable[str]) -> tuple[JobConfig, ...]:
    jobs: list[JobConfig] = []
    unknown: list[str] = []
    for key in keys:
        job = get_job_by_key(key)
        if job:
            jobs.append(job)
        else:
            unknown.append(key)
    if unknown:
        raise SystemExit(f"Unknown job keys: {', '.join(sorted(unknown))}")
    return tuple(jobs)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Argentina Datos sync job runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run the given jobs or job groups")
    sync_parser.add_argument("keys", nargs="+", help="Job keys such as update-dollar")
    sync_all_parser = subparsers.add_parser("sync-all", help="Run every configured job")
    for sub in (sync_parser, sync_all_parser):
        sub.add_argument(
            "--log-level",
            help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
        )

    subparsers.add_parser("list-jobs", help="Show configured jobs and groups")

    args = parser.parse_args(argv)
    if getattr(args, "log_level", None):
        os.environ["LOG_LEVEL"] = args.log_level

    if args.command == "list-jobs":
        for job in TARGET_JOBS:
            print(_format_job(job))
        for group, members in JOB_GROUPS.items():
            print(f"{group}: group of {', '.join(members)}")
        return 0

    if args.command == "sync-all":
        return run_load_all(None)

    if args.command == "sync":
        groups = [key for key in args.keys if key in JOB_GROUPS]
        jobs = _resolve_jobs_from_cli(key for key in args.keys if key not in JOB_GROUPS)
        status = 0
        if jobs:
            status = run_load_all(jobs)
        if groups:
            settings = load_settings()
            logging.basicConfig(level=settings.log_level)
            for group in groups:
                outcomes = asyncio.run(run_group_async(group, settings))
                if not all(outcome.success for outcome in outcomes):
                    status = 1
        return status

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
