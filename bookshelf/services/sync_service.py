"""Reconcile the cloud catalog with remote folder listings."""

import logging

from bookshelf.exceptions import MassDeletionRefusedError
from bookshelf.models import SyncFolder, SyncResult
from bookshelf.repositories import catalog_repository, folder_repository
from bookshelf.services.drive_service import RemoteDrive

logger = logging.getLogger(__name__)


class SyncService:
    """Pulls remote listings into the catalog and prunes unreachable placeholders."""

    def __init__(self, drive: RemoteDrive):
        self._drive = drive

    async def sync_folder(self, folder: SyncFolder) -> tuple[int, int]:
        """Upsert every PDF listed in ``folder``. Returns (new, updated) counts.

        Listing errors propagate and leave the catalog untouched for this folder.
        """
        files = await self._drive.list_pdf_files(folder.folder_id)

        new_count = 0
        updated_count = 0
        for remote_file in files:
            if await catalog_repository.upsert_cloud_item(remote_file, folder.folder_id):
                new_count += 1
            else:
                updated_count += 1

        logger.info(
            f"Synced folder {folder.folder_name}: {new_count} new, {updated_count} updated"
        )
        return new_count, updated_count

    async def prune_inactive_folders(self, allow_empty: bool = True) -> int:
        """Delete un-downloaded items whose folder is no longer actively synced.

        Completed items are never deleted. With no active folders every
        non-completed item is removed, unless ``allow_empty`` is False, in
        which case MassDeletionRefusedError is raised instead.
        """
        active_ids = await folder_repository.get_active_folder_ids()
        if not active_ids and not allow_empty:
            raise MassDeletionRefusedError(
                "No folders are active; pruning would remove every undownloaded item"
            )

        count = await catalog_repository.delete_cloud_items_outside_folders(active_ids)
        if count > 0:
            logger.info(f"Removed {count} cloud items from inactive folders")
        return count

    async def sync_all(self, allow_empty_prune: bool = True) -> SyncResult:
        """Sync every active folder, stamp each one, then prune."""
        result = SyncResult()
        for folder in await folder_repository.get_active_folders():
            new_count, updated_count = await self.sync_folder(folder)
            await folder_repository.touch_synced(folder.folder_id)
            result.new_files += new_count
            result.updated_files += updated_count

        result.removed_files = await self.prune_inactive_folders(allow_empty=allow_empty_prune)
        return result
