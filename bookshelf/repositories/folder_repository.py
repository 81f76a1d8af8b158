"""Repository for synced remote folders."""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from bookshelf.database import get_session, utc_now
from bookshelf.db_models import SyncFolderDB
from bookshelf.models import SyncFolder

logger = logging.getLogger(__name__)


def _db_to_model(row: SyncFolderDB) -> SyncFolder:
    return SyncFolder(
        folder_id=row.folder_id,
        folder_name=row.folder_name,
        active=bool(row.active),
        last_synced_at=datetime.fromisoformat(row.last_synced_at) if row.last_synced_at else None,
    )


async def add_folder(folder_id: str, folder_name: str) -> SyncFolder:
    """Start syncing a folder. Re-activates a previously removed one."""
    async with get_session() as session:
        stmt = sqlite_insert(SyncFolderDB).values(
            folder_id=folder_id,
            folder_name=folder_name,
            active=True,
            created_at=utc_now(),
        ).on_conflict_do_update(
            index_elements=["folder_id"],
            set_={"folder_name": folder_name, "active": True},
        )
        await session.execute(stmt)
        await session.commit()
        row = await session.scalar(select(SyncFolderDB).where(SyncFolderDB.folder_id == folder_id))
        logger.info(f"Syncing folder {folder_name} ({folder_id})")
        return _db_to_model(row)


async def deactivate_folder(folder_id: str) -> bool:
    """Stop syncing a folder. Downloaded files are kept."""
    async with get_session() as session:
        result = await session.execute(
            update(SyncFolderDB).where(SyncFolderDB.folder_id == folder_id).values(active=False)
        )
        await session.commit()
        return result.rowcount > 0


async def get_active_folders() -> list[SyncFolder]:
    async with get_session() as session:
        result = await session.execute(
            select(SyncFolderDB).where(SyncFolderDB.active.is_(True)).order_by(SyncFolderDB.folder_name)
        )
        return [_db_to_model(row) for row in result.scalars()]


async def get_all_folders() -> list[SyncFolder]:
    async with get_session() as session:
        result = await session.execute(select(SyncFolderDB).order_by(SyncFolderDB.folder_name))
        return [_db_to_model(row) for row in result.scalars()]


async def get_active_folder_ids() -> list[str]:
    async with get_session() as session:
        result = await session.execute(
            select(SyncFolderDB.folder_id).where(SyncFolderDB.active.is_(True))
        )
        return list(result.scalars())


async def touch_synced(folder_id: str) -> None:
    """Stamp last_synced_at for a folder."""
    async with get_session() as session:
        await session.execute(
            update(SyncFolderDB)
            .where(SyncFolderDB.folder_id == folder_id)
            .values(last_synced_at=utc_now())
        )
        await session.commit()
