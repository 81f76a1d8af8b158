"""Bookshelf API endpoints: listing, sync and local library management."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException

from bookshelf.exceptions import (
    AlreadyImportedError,
    DownloadError,
    InvalidImportError,
    MassDeletionRefusedError,
)
from bookshelf.models import (
    BookshelfItem,
    DirectoryImportRequest,
    FileImportRequest,
    ImportRequest,
    ImportResult,
    LastOpenedUpdate,
    LocalItem,
    SyncResult,
    ThumbnailUpdate,
)
from bookshelf.repositories import catalog_repository
from bookshelf.routes.deps import get_library_service, get_sync_service
from bookshelf.services import recovery
from bookshelf.services.library_service import LibraryService
from bookshelf.services.sync_service import SyncService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/items", response_model=list[BookshelfItem])
async def list_items(library: LibraryService = Depends(get_library_service)):
    """All cloud and local items. Rows whose files vanished are healed first."""
    await recovery.verify_files()
    return await library.get_items()


@router.post("/sync", response_model=SyncResult)
async def sync(
    confirm_empty: bool = False,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Sync every active folder, then prune items from inactive ones.

    With no active folders the prune would drop every undownloaded item,
    so the caller must pass ``confirm_empty=true`` to allow it.
    """
    try:
        return await sync_service.sync_all(allow_empty_prune=confirm_empty)
    except MassDeletionRefusedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except DownloadError as e:
        logger.error(f"Sync failed: {e}")
        raise HTTPException(status_code=502, detail=f"Sync failed: {e}")


@router.post("/prune")
async def prune(
    confirm_empty: bool = False,
    sync_service: SyncService = Depends(get_sync_service),
):
    """Delete undownloaded items that belong to no active folder."""
    try:
        count = await sync_service.prune_inactive_folders(allow_empty=confirm_empty)
    except MassDeletionRefusedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "removed": count}


@router.post("/import", response_model=ImportResult)
async def import_files(
    data: ImportRequest,
    library: LibraryService = Depends(get_library_service),
):
    """Copy local PDFs into the bookshelf. Already imported paths are skipped."""
    return await library.import_files(data.paths)


@router.post("/import/file", response_model=LocalItem)
async def import_file(
    data: FileImportRequest,
    library: LibraryService = Depends(get_library_service),
):
    """Import a single PDF and return the new item."""
    try:
        return await library.import_file(data.path)
    except AlreadyImportedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidImportError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/import/directory", response_model=ImportResult)
async def import_directory(
    data: DirectoryImportRequest,
    library: LibraryService = Depends(get_library_service),
):
    try:
        return await library.import_directory(data.path)
    except InvalidImportError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/local/{item_id}")
async def delete_local_item(
    item_id: int,
    library: LibraryService = Depends(get_library_service),
):
    """Remove an imported item and its managed copy."""
    if not await library.delete_local_item(item_id):
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}


@router.delete("/cloud/{remote_file_id}/file")
async def delete_cloud_local_copy(
    remote_file_id: str,
    library: LibraryService = Depends(get_library_service),
):
    """Delete the downloaded copy of a cloud item. The item stays, back to pending."""
    if not await library.delete_cloud_local_copy(remote_file_id):
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}


@router.post("/{source}/{item_id}/favorite")
async def toggle_favorite(source: Literal["cloud", "local"], item_id: int):
    if source == "cloud":
        favorite = await catalog_repository.toggle_cloud_favorite(item_id)
    else:
        favorite = await catalog_repository.toggle_local_favorite(item_id)
    if favorite is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True, "favorite": favorite}


@router.put("/cloud/{remote_file_id}/thumbnail")
async def update_cloud_thumbnail(remote_file_id: str, data: ThumbnailUpdate):
    if not await catalog_repository.update_cloud_thumbnail(remote_file_id, data.thumbnail):
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}


@router.put("/local/{item_id}/thumbnail")
async def update_local_thumbnail(item_id: int, data: ThumbnailUpdate):
    if not await catalog_repository.update_local_thumbnail(item_id, data.thumbnail):
        raise HTTPException(status_code=404, detail="Item not found")
    return {"success": True}


@router.post("/last-opened")
async def mark_opened(data: LastOpenedUpdate):
    """Stamp last_opened on whichever item is stored at ``path``."""
    if not await catalog_repository.update_last_opened(data.path):
        raise HTTPException(status_code=404, detail="No item stored at this path")
    return {"success": True}
