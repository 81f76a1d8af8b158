"""Crash recovery run once per launch, before any download can start."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from bookshelf.repositories import catalog_repository, queue_repository

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    requeued_jobs: int = 0
    stale_downloads: int = 0
    missing_cloud_files: int = 0
    missing_local_files: int = 0


async def _exists(path: str) -> bool:
    return await asyncio.to_thread(Path(path).exists)


async def verify_files() -> tuple[int, int]:
    """Heal catalog rows whose files vanished from disk.

    Completed cloud items go back to pending; local items are deleted.
    Returns (cloud_reset, local_deleted). Idempotent.
    """
    cloud_reset = 0
    for item in await catalog_repository.get_completed_cloud_items():
        if not await _exists(item.local_path):
            logger.warning(f"Cloud file missing, resetting to pending: {item.local_path}")
            await catalog_repository.reset_cloud_item(item.remote_file_id)
            cloud_reset += 1

    local_deleted = 0
    for item in await catalog_repository.get_local_items():
        if not await _exists(item.file_path):
            logger.warning(f"Local file missing, deleting entry: {item.file_path}")
            await catalog_repository.delete_local_item(item.id)
            local_deleted += 1

    return cloud_reset, local_deleted


async def run_startup_recovery() -> RecoveryReport:
    """Requeue interrupted jobs and reconcile the catalog with the disk."""
    report = RecoveryReport()
    report.requeued_jobs = await queue_repository.reset_stuck_processing()
    report.stale_downloads = await catalog_repository.reset_stale_downloads()
    report.missing_cloud_files, report.missing_local_files = await verify_files()

    logger.info(
        f"Startup recovery: {report.requeued_jobs} jobs requeued, "
        f"{report.stale_downloads} stale downloads reset, "
        f"{report.missing_cloud_files} missing cloud files, "
        f"{report.missing_local_files} missing local files"
    )
    return report
