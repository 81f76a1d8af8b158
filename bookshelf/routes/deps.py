"""Shared route dependencies: services held on app state."""

from fastapi import Request

from bookshelf.services.download_manager import DownloadManager
from bookshelf.services.library_service import LibraryService
from bookshelf.services.sync_service import SyncService


def get_download_manager(request: Request) -> DownloadManager:
    """Get the download manager from app state."""
    manager: DownloadManager = request.app.state.download_manager
    return manager


def get_sync_service(request: Request) -> SyncService:
    sync_service: SyncService = request.app.state.sync_service
    return sync_service


def get_library_service(request: Request) -> LibraryService:
    library: LibraryService = request.app.state.library_service
    return library
