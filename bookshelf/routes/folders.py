"""Sync folder endpoints."""

from fastapi import APIRouter, HTTPException

from bookshelf.models import FolderCreate, SyncFolder
from bookshelf.repositories import folder_repository

router = APIRouter()


@router.get("", response_model=list[SyncFolder])
async def list_folders(active_only: bool = False):
    if active_only:
        return await folder_repository.get_active_folders()
    return await folder_repository.get_all_folders()


@router.post("", response_model=SyncFolder)
async def add_folder(data: FolderCreate):
    """Start syncing a remote folder. Re-adding a deactivated folder reactivates it."""
    return await folder_repository.add_folder(data.folder_id, data.folder_name)


@router.delete("/{folder_id}")
async def deactivate_folder(folder_id: str):
    """Stop syncing a folder. Its undownloaded items go on the next prune."""
    if not await folder_repository.deactivate_folder(folder_id):
        raise HTTPException(status_code=404, detail="Folder not found")
    return {"success": True}
