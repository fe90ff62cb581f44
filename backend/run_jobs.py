#!/usr/bin/env python3
"""
Maintenance jobs, meant to be scheduled with cron.

Usage:
    python run_jobs.py release-commissions
    python run_jobs.py backup
    python run_jobs.py cleanup-backups [--days N]
    python run_jobs.py cleanup-audit-logs [--days N]
"""

import argparse
import asyncio
import logging
import sys

from db.session import SessionLocal, engine
from services.commission_service import release_pending_commissions
from services.backup_service import create_database_backup, cleanup_old_backups
from services.audit_service import cleanup_old_logs
from utils.logging_config import configure_logging

logger = logging.getLogger("vitaclube.jobs")


async def release_commissions() -> None:
    async with SessionLocal() as db:
        released = await release_pending_commissions(db)
    logger.info(f"Released {released} commission(s)")


async def backup() -> None:
    async with SessionLocal() as db:
        path = await create_database_backup(db)
    logger.info(f"Backup written to {path}")


async def cleanup_backups(days=None) -> None:
    removed = cleanup_old_backups(retention_days=days)
    logger.info(f"Removed {len(removed)} backup file(s)")


async def cleanup_audit_logs(days=None) -> None:
    async with SessionLocal() as db:
        await cleanup_old_logs(db, retention_days=days)


JOBS = {
    "release-commissions": release_commissions,
    "backup": backup,
    "cleanup-backups": cleanup_backups,
    "cleanup-audit-logs": cleanup_audit_logs,
}


async def run(job: str, days=None) -> None:
    try:
        if job in ("cleanup-backups", "cleanup-audit-logs"):
            await JOBS[job](days)
        else:
            await JOBS[job]()
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="VitaClube maintenance jobs")
    parser.add_argument("job", choices=sorted(JOBS))
    parser.add_argument("--days", type=int, default=None, help="Retention window for cleanup jobs")
    args = parser.parse_args(argv)

    configure_logging("vitaclube")
    try:
        asyncio.run(run(args.job, args.days))
    except Exception as e:
        logger.error(f"Job {args.job} failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
