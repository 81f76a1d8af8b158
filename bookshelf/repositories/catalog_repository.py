"""Repository for bookshelf catalog items (cloud downloads and local imports)."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from bookshelf.database import get_session, utc_now
from bookshelf.db_models import CloudItemDB, LocalItemDB
from bookshelf.models import CloudItem, DownloadStatus, LocalItem, RemoteFile

logger = logging.getLogger(__name__)


def _ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _cloud_to_model(row: CloudItemDB) -> CloudItem:
    """Convert DB row to Pydantic model. Unknown statuses raise ValueError."""
    return CloudItem(
        id=row.id,
        remote_file_id=row.remote_file_id,
        remote_folder_id=row.remote_folder_id,
        file_name=row.file_name,
        file_size=row.file_size,
        remote_modified_time=row.remote_modified_time,
        thumbnail=row.thumbnail,
        local_path=row.local_path,
        download_status=DownloadStatus(row.download_status),
        download_progress=row.download_progress or 0.0,
        title=row.title,
        author=row.author,
        favorite=bool(row.favorite),
        last_opened=_ts(row.last_opened),
        created_at=_ts(row.created_at),
        updated_at=_ts(row.updated_at),
    )


def _local_to_model(row: LocalItemDB) -> LocalItem:
    return LocalItem(
        id=row.id,
        file_path=row.file_path,
        original_path=row.original_path,
        file_name=row.file_name,
        file_size=row.file_size,
        thumbnail=row.thumbnail,
        title=row.title,
        author=row.author,
        favorite=bool(row.favorite),
        last_opened=_ts(row.last_opened),
        imported_at=_ts(row.imported_at),
    )


# ---------------------------------------------------------------------------
# Cloud items
# ---------------------------------------------------------------------------


async def upsert_cloud_item(remote_file: RemoteFile, folder_id: str) -> bool:
    """Insert a listed remote file, or refresh its listing fields.

    Download state (status, progress, local_path) is never touched here.
    Returns True if the item was new.
    """
    now = utc_now()
    async with get_session() as session:
        existing = await session.scalar(
            select(CloudItemDB.id).where(CloudItemDB.remote_file_id == remote_file.id)
        )
        stmt = sqlite_insert(CloudItemDB).values(
            remote_file_id=remote_file.id,
            remote_folder_id=folder_id,
            file_name=remote_file.name,
            file_size=remote_file.size,
            remote_modified_time=remote_file.modified_time,
            download_status=DownloadStatus.PENDING.value,
            download_progress=0.0,
            favorite=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["remote_file_id"],
            set_={
                "file_name": stmt.excluded.file_name,
                "file_size": stmt.excluded.file_size,
                "remote_modified_time": stmt.excluded.remote_modified_time,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        await session.commit()
        return existing is None


async def get_cloud_items() -> list[CloudItem]:
    """All cloud items, most recently opened first, then by name."""
    async with get_session() as session:
        result = await session.execute(
            select(CloudItemDB).order_by(
                CloudItemDB.last_opened.is_(None),
                CloudItemDB.last_opened.desc(),
                CloudItemDB.file_name.asc(),
            )
        )
        return [_cloud_to_model(row) for row in result.scalars()]


async def get_cloud_item(remote_file_id: str) -> Optional[CloudItem]:
    async with get_session() as session:
        row = await session.scalar(
            select(CloudItemDB).where(CloudItemDB.remote_file_id == remote_file_id)
        )
        return _cloud_to_model(row) if row else None


async def get_completed_cloud_items() -> list[CloudItem]:
    """Cloud items marked completed with a local path."""
    async with get_session() as session:
        result = await session.execute(
            select(CloudItemDB)
            .where(CloudItemDB.download_status == DownloadStatus.COMPLETED.value)
            .where(CloudItemDB.local_path.is_not(None))
        )
        return [_cloud_to_model(row) for row in result.scalars()]


async def update_download_state(
    remote_file_id: str,
    status: DownloadStatus,
    progress: float,
) -> None:
    """Set a non-completed status and progress for a cloud item.

    local_path is cleared: only ``mark_cloud_completed`` sets it.
    """
    if status == DownloadStatus.COMPLETED:
        raise ValueError("Use mark_cloud_completed() to complete an item")
    async with get_session() as session:
        await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .values(
                download_status=status.value,
                download_progress=progress,
                local_path=None,
                updated_at=utc_now(),
            )
        )
        await session.commit()


async def update_download_progress(remote_file_id: str, progress: float) -> None:
    """Raise progress of a downloading item. Progress never moves backwards."""
    async with get_session() as session:
        await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .where(CloudItemDB.download_status == DownloadStatus.DOWNLOADING.value)
            .where(CloudItemDB.download_progress < progress)
            .values(download_progress=progress)
        )
        await session.commit()


async def mark_cloud_completed(remote_file_id: str, local_path: str) -> bool:
    """Record a finished download. False if the item is no longer in the catalog."""
    async with get_session() as session:
        result = await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .values(
                download_status=DownloadStatus.COMPLETED.value,
                download_progress=100.0,
                local_path=local_path,
                updated_at=utc_now(),
            )
        )
        await session.commit()
        if result.rowcount == 0:
            return False
        logger.debug(f"Cloud item {remote_file_id} completed at {local_path}")
        return True


async def reset_cloud_item(remote_file_id: str) -> None:
    """Return a cloud item to pending with no local copy."""
    async with get_session() as session:
        await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .values(
                download_status=DownloadStatus.PENDING.value,
                download_progress=0.0,
                local_path=None,
                thumbnail=None,
                updated_at=utc_now(),
            )
        )
        await session.commit()


async def reset_stale_downloads() -> int:
    """Reset items left 'downloading' by a previous process to pending."""
    async with get_session() as session:
        result = await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.download_status == DownloadStatus.DOWNLOADING.value)
            .values(
                download_status=DownloadStatus.PENDING.value,
                download_progress=0.0,
                local_path=None,
                updated_at=utc_now(),
            )
        )
        await session.commit()
        return result.rowcount


async def delete_cloud_items_outside_folders(active_folder_ids: list[str]) -> int:
    """Delete un-downloaded items whose folder is not in ``active_folder_ids``.

    Completed items are always kept. An empty list matches every folder.
    """
    async with get_session() as session:
        stmt = delete(CloudItemDB).where(
            CloudItemDB.download_status != DownloadStatus.COMPLETED.value
        )
        if active_folder_ids:
            stmt = stmt.where(CloudItemDB.remote_folder_id.notin_(active_folder_ids))
        result = await session.execute(stmt)
        await session.commit()
        return result.rowcount


async def update_cloud_metadata(
    remote_file_id: str, title: Optional[str], author: Optional[str]
) -> None:
    async with get_session() as session:
        await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .values(title=title, author=author, updated_at=utc_now())
        )
        await session.commit()


async def update_cloud_thumbnail(remote_file_id: str, thumbnail: str) -> bool:
    async with get_session() as session:
        result = await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.remote_file_id == remote_file_id)
            .values(thumbnail=thumbnail, updated_at=utc_now())
        )
        await session.commit()
        return result.rowcount > 0


async def toggle_cloud_favorite(item_id: int) -> Optional[bool]:
    """Flip favorite flag. Returns the new value, or None if not found."""
    async with get_session() as session:
        row = await session.get(CloudItemDB, item_id)
        if row is None:
            return None
        row.favorite = not row.favorite
        row.updated_at = utc_now()
        await session.commit()
        return row.favorite


# ---------------------------------------------------------------------------
# Local items
# ---------------------------------------------------------------------------


async def get_local_items() -> list[LocalItem]:
    """All local items, most recently opened first, then by name."""
    async with get_session() as session:
        result = await session.execute(
            select(LocalItemDB).order_by(
                LocalItemDB.last_opened.is_(None),
                LocalItemDB.last_opened.desc(),
                LocalItemDB.file_name.asc(),
            )
        )
        return [_local_to_model(row) for row in result.scalars()]


async def get_local_item(item_id: int) -> Optional[LocalItem]:
    async with get_session() as session:
        row = await session.get(LocalItemDB, item_id)
        return _local_to_model(row) if row else None


async def get_local_by_original_path(original_path: str) -> Optional[LocalItem]:
    async with get_session() as session:
        row = await session.scalar(
            select(LocalItemDB).where(LocalItemDB.original_path == original_path)
        )
        return _local_to_model(row) if row else None


async def insert_local_item(
    file_path: str,
    original_path: str,
    file_name: str,
    file_size: Optional[int],
) -> LocalItem:
    """Record an imported file."""
    now = utc_now()
    async with get_session() as session:
        row = LocalItemDB(
            file_path=file_path,
            original_path=original_path,
            file_name=file_name,
            file_size=file_size,
            favorite=False,
            imported_at=now,
            updated_at=now,
        )
        session.add(row)
        await session.commit()
        await session.refresh(row)
        logger.info(f"Imported {original_path} as {file_path}")
        return _local_to_model(row)


async def delete_local_item(item_id: int) -> bool:
    async with get_session() as session:
        result = await session.execute(delete(LocalItemDB).where(LocalItemDB.id == item_id))
        await session.commit()
        return result.rowcount > 0


async def update_local_metadata(item_id: int, title: Optional[str], author: Optional[str]) -> None:
    async with get_session() as session:
        await session.execute(
            update(LocalItemDB)
            .where(LocalItemDB.id == item_id)
            .values(title=title, author=author, updated_at=utc_now())
        )
        await session.commit()


async def update_local_thumbnail(item_id: int, thumbnail: str) -> bool:
    async with get_session() as session:
        result = await session.execute(
            update(LocalItemDB)
            .where(LocalItemDB.id == item_id)
            .values(thumbnail=thumbnail, updated_at=utc_now())
        )
        await session.commit()
        return result.rowcount > 0


async def toggle_local_favorite(item_id: int) -> Optional[bool]:
    """Flip favorite flag. Returns the new value, or None if not found."""
    async with get_session() as session:
        row = await session.get(LocalItemDB, item_id)
        if row is None:
            return None
        row.favorite = not row.favorite
        row.updated_at = utc_now()
        await session.commit()
        return row.favorite


# ---------------------------------------------------------------------------
# Combined
# ---------------------------------------------------------------------------


async def update_last_opened(path: str) -> bool:
    """Stamp last_opened on the item stored at ``path`` (cloud first, then local)."""
    now = utc_now()
    async with get_session() as session:
        result = await session.execute(
            update(CloudItemDB)
            .where(CloudItemDB.local_path == path)
            .values(last_opened=now, updated_at=now)
        )
        if result.rowcount == 0:
            result = await session.execute(
                update(LocalItemDB)
                .where(LocalItemDB.file_path == path)
                .values(last_opened=now, updated_at=now)
            )
        await session.commit()
        return result.rowcount > 0
