"""Repository for the persistent download queue."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from bookshelf.database import get_session, utc_now
from bookshelf.db_models import CloudItemDB, QueuedDownloadDB
from bookshelf.models import (
    ACTIVE_QUEUE_STATUSES,
    TERMINAL_QUEUE_STATUSES,
    QueuedDownload,
    QueueStatus,
)

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = sorted(s.value for s in TERMINAL_QUEUE_STATUSES)
ACTIVE_STATUSES = sorted(s.value for s in ACTIVE_QUEUE_STATUSES)


def _db_to_model(row: QueuedDownloadDB) -> QueuedDownload:
    """Convert DB row to Pydantic model. Unknown statuses raise ValueError."""
    return QueuedDownload(
        id=row.id,
        remote_file_id=row.remote_file_id,
        file_name=row.file_name,
        priority=row.priority,
        status=QueueStatus(row.status),
        error_message=row.error_message,
        download_progress=row.download_progress or 0.0,
        queued_at=datetime.fromisoformat(row.queued_at),
        started_at=datetime.fromisoformat(row.started_at) if row.started_at else None,
        completed_at=datetime.fromisoformat(row.completed_at) if row.completed_at else None,
    )


def _upsert_statement(remote_file_id: str, file_name: str, priority: int, now: str):
    """Build the enqueue upsert.

    A terminal row is reset to a fresh queued job in place. A queued or
    processing row keeps its state and only has its priority raised.
    """
    stmt = sqlite_insert(QueuedDownloadDB).values(
        remote_file_id=remote_file_id,
        file_name=file_name,
        priority=priority,
        status=QueueStatus.QUEUED.value,
        download_progress=0.0,
        queued_at=now,
    )
    is_terminal = QueuedDownloadDB.status.in_(TERMINAL_STATUSES)
    return stmt.on_conflict_do_update(
        index_elements=["remote_file_id"],
        set_={
            "priority": case(
                (is_terminal, stmt.excluded.priority),
                else_=func.max(QueuedDownloadDB.priority, stmt.excluded.priority),
            ),
            "file_name": case((is_terminal, stmt.excluded.file_name), else_=QueuedDownloadDB.file_name),
            "status": case((is_terminal, QueueStatus.QUEUED.value), else_=QueuedDownloadDB.status),
            "download_progress": case((is_terminal, 0.0), else_=QueuedDownloadDB.download_progress),
            "error_message": case((is_terminal, None), else_=QueuedDownloadDB.error_message),
            "queued_at": case((is_terminal, stmt.excluded.queued_at), else_=QueuedDownloadDB.queued_at),
            "started_at": case((is_terminal, None), else_=QueuedDownloadDB.started_at),
            "completed_at": case((is_terminal, None), else_=QueuedDownloadDB.completed_at),
        },
    )


async def enqueue(remote_file_id: str, file_name: str, priority: int = 0) -> int:
    """Queue a remote file for download. Returns the job id.

    Idempotent: re-enqueueing an active job never duplicates or restarts it.
    """
    async with get_session() as session:
        await session.execute(_upsert_statement(remote_file_id, file_name, priority, utc_now()))
        await session.commit()
        job_id = await session.scalar(
            select(QueuedDownloadDB.id).where(QueuedDownloadDB.remote_file_id == remote_file_id)
        )
        logger.debug(f"Enqueued {remote_file_id} (job {job_id}, priority {priority})")
        return job_id


async def enqueue_all_pending() -> int:
    """Queue every cloud item that has no local copy and no active job.

    Returns the number of items enqueued.
    """
    async with get_session() as session:
        active_ids = select(QueuedDownloadDB.remote_file_id).where(
            QueuedDownloadDB.status.in_(ACTIVE_STATUSES)
        )
        result = await session.execute(
            select(CloudItemDB.remote_file_id, CloudItemDB.file_name)
            .where(CloudItemDB.local_path.is_(None))
            .where(CloudItemDB.remote_file_id.notin_(active_ids))
            .order_by(CloudItemDB.file_name)
        )
        items = result.all()

        now = utc_now()
        for remote_file_id, file_name in items:
            await session.execute(_upsert_statement(remote_file_id, file_name, 0, now))
        await session.commit()

        if items:
            logger.info(f"Enqueued {len(items)} pending cloud items")
        return len(items)


async def get_next_queued() -> Optional[QueuedDownload]:
    """Highest-priority queued job, oldest first within a priority. Read-only."""
    async with get_session() as session:
        row = await session.scalar(
            select(QueuedDownloadDB)
            .where(QueuedDownloadDB.status == QueueStatus.QUEUED.value)
            .order_by(
                QueuedDownloadDB.priority.desc(),
                QueuedDownloadDB.queued_at.asc(),
                QueuedDownloadDB.id.asc(),
            )
            .limit(1)
        )
        return _db_to_model(row) if row else None


async def get_processing() -> Optional[QueuedDownload]:
    """The job currently marked processing, if any."""
    async with get_session() as session:
        row = await session.scalar(
            select(QueuedDownloadDB)
            .where(QueuedDownloadDB.status == QueueStatus.PROCESSING.value)
            .limit(1)
        )
        return _db_to_model(row) if row else None


async def get_by_file_id(remote_file_id: str) -> Optional[QueuedDownload]:
    """Get the job for a remote file."""
    async with get_session() as session:
        row = await session.scalar(
            select(QueuedDownloadDB).where(QueuedDownloadDB.remote_file_id == remote_file_id)
        )
        return _db_to_model(row) if row else None


async def get_all(status: Optional[QueueStatus] = None) -> list[QueuedDownload]:
    """List jobs in dispatch order."""
    async with get_session() as session:
        query = select(QueuedDownloadDB)
        if status is not None:
            query = query.where(QueuedDownloadDB.status == status.value)
        result = await session.execute(
            query.order_by(
                QueuedDownloadDB.priority.desc(),
                QueuedDownloadDB.queued_at.asc(),
                QueuedDownloadDB.id.asc(),
            )
        )
        return [_db_to_model(row) for row in result.scalars()]


async def mark_processing(remote_file_id: str) -> bool:
    """Claim a queued job: transition it to processing and stamp started_at.

    Returns False if the job is no longer queued.
    """
    async with get_session() as session:
        result = await session.execute(
            update(QueuedDownloadDB)
            .where(QueuedDownloadDB.remote_file_id == remote_file_id)
            .where(QueuedDownloadDB.status == QueueStatus.QUEUED.value)
            .values(status=QueueStatus.PROCESSING.value, started_at=utc_now())
        )
        await session.commit()
        claimed = result.rowcount > 0
        if claimed:
            logger.debug(f"Job {remote_file_id} processing")
        return claimed


async def mark_terminal(
    remote_file_id: str,
    status: QueueStatus,
    error_message: Optional[str] = None,
) -> bool:
    """Finish a processing job as completed, error or cancelled and stamp completed_at.

    Only a row still in processing is touched, so a job re-queued under the
    same file id is never overwritten. Returns True if a row was updated.
    """
    if status not in TERMINAL_QUEUE_STATUSES:
        raise ValueError(f"Not a terminal queue status: {status.value}")

    values = {"status": status.value, "completed_at": utc_now(), "error_message": error_message}
    if status == QueueStatus.COMPLETED:
        values["download_progress"] = 100.0

    async with get_session() as session:
        result = await session.execute(
            update(QueuedDownloadDB)
            .where(QueuedDownloadDB.remote_file_id == remote_file_id)
            .where(QueuedDownloadDB.status == QueueStatus.PROCESSING.value)
            .values(**values)
        )
        await session.commit()
        if result.rowcount == 0:
            logger.warning(f"Job {remote_file_id} was not processing, {status.value} not recorded")
            return False
        logger.debug(f"Job {remote_file_id} -> {status.value}")
        return True


async def update_progress(remote_file_id: str, progress: float) -> None:
    """Record transfer progress for a processing job."""
    async with get_session() as session:
        await session.execute(
            update(QueuedDownloadDB)
            .where(QueuedDownloadDB.remote_file_id == remote_file_id)
            .where(QueuedDownloadDB.status == QueueStatus.PROCESSING.value)
            .values(download_progress=progress)
        )
        await session.commit()


async def remove(remote_file_id: str) -> bool:
    """Delete a job row that is not processing. Returns True if a row was deleted.

    A processing job belongs to the running worker and must be cancelled instead.
    """
    async with get_session() as session:
        result = await session.execute(
            delete(QueuedDownloadDB)
            .where(QueuedDownloadDB.remote_file_id == remote_file_id)
            .where(QueuedDownloadDB.status != QueueStatus.PROCESSING.value)
        )
        await session.commit()
        return result.rowcount > 0


async def clear_queued() -> int:
    """Delete jobs still waiting. Processing jobs are left alone."""
    async with get_session() as session:
        result = await session.execute(
            delete(QueuedDownloadDB).where(QueuedDownloadDB.status == QueueStatus.QUEUED.value)
        )
        await session.commit()
        count = result.rowcount
        logger.info(f"Cleared {count} queued downloads")
        return count


async def delete_finished() -> int:
    """Delete completed/error/cancelled jobs from history."""
    async with get_session() as session:
        result = await session.execute(
            delete(QueuedDownloadDB).where(QueuedDownloadDB.status.in_(TERMINAL_STATUSES))
        )
        await session.commit()
        count = result.rowcount
        logger.info(f"Deleted {count} finished downloads from history")
        return count


async def get_pending_count() -> int:
    """Number of jobs queued or processing."""
    async with get_session() as session:
        count = await session.scalar(
            select(func.count())
            .select_from(QueuedDownloadDB)
            .where(QueuedDownloadDB.status.in_(ACTIVE_STATUSES))
        )
        return count or 0


async def reset_stuck_processing() -> int:
    """Requeue every processing job (startup only: no worker is alive yet).

    Returns the count of jobs reset.
    """
    async with get_session() as session:
        result = await session.execute(
            update(QueuedDownloadDB)
            .where(QueuedDownloadDB.status == QueueStatus.PROCESSING.value)
            .values(status=QueueStatus.QUEUED.value, started_at=None)
        )
        await session.commit()
        count = result.rowcount
        if count > 0:
            logger.info(f"Requeued {count} downloads interrupted by restart")
        return count
