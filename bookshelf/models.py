from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime


class DownloadStatus(str, Enum):
    """Download state of a cloud item on the bookshelf."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"


class QueueStatus(str, Enum):
    """Status of a queued download job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


# Terminal jobs may be reset to queued by a re-enqueue; active ones never are
TERMINAL_QUEUE_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.ERROR, QueueStatus.CANCELLED})
ACTIVE_QUEUE_STATUSES = frozenset({QueueStatus.QUEUED, QueueStatus.PROCESSING})


class CloudItem(BaseModel):
    """A PDF that exists on the remote drive."""
    id: int
    remote_file_id: str
    remote_folder_id: str
    file_name: str
    file_size: Optional[int] = None
    remote_modified_time: Optional[str] = None
    thumbnail: Optional[str] = None
    local_path: Optional[str] = None
    download_status: DownloadStatus = DownloadStatus.PENDING
    download_progress: float = 0.0
    title: Optional[str] = None
    author: Optional[str] = None
    favorite: bool = False
    last_opened: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class LocalItem(BaseModel):
    """A PDF imported from the local filesystem."""
    id: int
    file_path: str  # managed copy
    original_path: str
    file_name: str
    file_size: Optional[int] = None
    thumbnail: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    favorite: bool = False
    last_opened: Optional[datetime] = None
    imported_at: datetime


class SyncFolder(BaseModel):
    """A remote folder kept mirrored onto the bookshelf."""
    folder_id: str
    folder_name: str
    active: bool = True
    last_synced_at: Optional[datetime] = None


class QueuedDownload(BaseModel):
    """A durable download job."""
    id: int
    remote_file_id: str
    file_name: str
    priority: int = 0
    status: QueueStatus = QueueStatus.QUEUED
    error_message: Optional[str] = None
    download_progress: float = 0.0
    queued_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class QueueState(BaseModel):
    """Snapshot of the download pipeline for polling clients."""
    is_running: bool
    current_item: Optional[QueuedDownload] = None
    pending_count: int = 0


class RemoteFile(BaseModel):
    """A file entry from a remote folder listing."""
    id: str
    name: str
    size: Optional[int] = None
    modified_time: Optional[str] = None


class DownloadProgress(BaseModel):
    """Progress event for an in-flight download."""
    remote_file_id: str
    progress: float
    downloaded_bytes: int
    total_bytes: int  # 0 = unknown


class SyncResult(BaseModel):
    """Outcome of syncing all active folders."""
    new_files: int = 0
    updated_files: int = 0
    removed_files: int = 0


class ImportResult(BaseModel):
    """Outcome of importing a local directory."""
    imported_count: int = 0
    skipped_count: int = 0
    error_count: int = 0


class BookshelfItem(BaseModel):
    """Merged view of cloud and local items for listing."""
    id: int
    source: str  # "cloud" or "local"
    remote_file_id: Optional[str] = None
    remote_folder_id: Optional[str] = None
    file_name: str
    file_size: Optional[int] = None
    thumbnail: Optional[str] = None
    local_path: Optional[str] = None
    download_status: DownloadStatus
    download_progress: float = 0.0
    title: Optional[str] = None
    author: Optional[str] = None
    original_path: Optional[str] = None
    favorite: bool = False
    last_opened: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_cloud(cls, item: CloudItem) -> "BookshelfItem":
        return cls(
            id=item.id,
            source="cloud",
            remote_file_id=item.remote_file_id,
            remote_folder_id=item.remote_folder_id,
            file_name=item.file_name,
            file_size=item.file_size,
            thumbnail=item.thumbnail,
            local_path=item.local_path,
            download_status=item.download_status,
            download_progress=item.download_progress,
            title=item.title,
            author=item.author,
            favorite=item.favorite,
            last_opened=item.last_opened,
            created_at=item.created_at,
        )

    @classmethod
    def from_local(cls, item: LocalItem) -> "BookshelfItem":
        # Local imports are always present on disk
        return cls(
            id=item.id,
            source="local",
            file_name=item.file_name,
            file_size=item.file_size,
            thumbnail=item.thumbnail,
            local_path=item.file_path,
            download_status=DownloadStatus.COMPLETED,
            download_progress=100.0,
            title=item.title,
            author=item.author,
            original_path=item.original_path,
            favorite=item.favorite,
            last_opened=item.last_opened,
            created_at=item.imported_at,
        )


class EnqueueRequest(BaseModel):
    """Request to queue a cloud item for download."""
    remote_file_id: str
    file_name: str
    priority: int = 0


class FolderCreate(BaseModel):
    """Request to start syncing a remote folder."""
    folder_id: str
    folder_name: str


class ImportRequest(BaseModel):
    """Request to import local PDFs."""
    paths: list[str] = Field(default_factory=list)


class DirectoryImportRequest(BaseModel):
    """Request to import every PDF in a local directory."""
    path: str


class ThumbnailUpdate(BaseModel):
    """Request to store a rendered thumbnail."""
    thumbnail: str


class LastOpenedUpdate(BaseModel):
    """Request to stamp last_opened for an opened file."""
    path: str


class FileImportRequest(BaseModel):
    """Request to import one local PDF."""
    path: str
