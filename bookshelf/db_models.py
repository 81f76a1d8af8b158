"""SQLAlchemy ORM models for SQLite database."""

from sqlalchemy import Boolean, CheckConstraint, Column, String, Text, Integer, Float, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class CloudItemDB(Base):
    """PDF known to exist on the remote drive."""
    __tablename__ = "cloud_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    remote_file_id = Column(String, nullable=False, unique=True)
    remote_folder_id = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    remote_modified_time = Column(String, nullable=True)
    thumbnail = Column(Text, nullable=True)  # data URL
    local_path = Column(String, nullable=True)
    download_status = Column(String, nullable=False, default="pending")
    download_progress = Column(Float, nullable=False, default=0.0)
    title = Column(String, nullable=True)
    author = Column(String, nullable=True)
    favorite = Column(Boolean, nullable=False, default=False)
    last_opened = Column(String, nullable=True)  # ISO format timestamp
    created_at = Column(String, nullable=False)  # ISO format timestamp
    updated_at = Column(String, nullable=False)  # ISO format timestamp

    __table_args__ = (
        CheckConstraint(
            "download_status IN ('pending', 'downloading', 'completed', 'error')",
            name="ck_cloud_items_download_status",
        ),
        Index("idx_cloud_items_folder", "remote_folder_id"),
        Index("idx_cloud_items_status", "download_status"),
        Index("idx_cloud_items_last_opened", "last_opened"),
    )


class LocalItemDB(Base):
    """PDF imported from the local filesystem into managed storage."""
    __tablename__ = "local_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_path = Column(String, nullable=False, unique=True)  # managed copy
    original_path = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    thumbnail = Column(Text, nullable=True)
    title = Column(String, nullable=True)
    author = Column(String, nullable=True)
    favorite = Column(Boolean, nullable=False, default=False)
    last_opened = Column(String, nullable=True)
    imported_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    __table_args__ = (
        Index("idx_local_items_original_path", "original_path"),
        Index("idx_local_items_last_opened", "last_opened"),
    )


class SyncFolderDB(Base):
    """Remote folder mirrored onto the bookshelf."""
    __tablename__ = "sync_folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(String, nullable=False, unique=True)
    folder_name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(String, nullable=True)
    created_at = Column(String, nullable=False)


class QueuedDownloadDB(Base):
    """Durable download job, one row per remote file."""
    __tablename__ = "download_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    remote_file_id = Column(String, nullable=False, unique=True)
    file_name = Column(String, nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="queued")
    error_message = Column(Text, nullable=True)
    download_progress = Column(Float, nullable=False, default=0.0)
    queued_at = Column(String, nullable=False)
    started_at = Column(String, nullable=True)
    completed_at = Column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'error', 'cancelled')",
            name="ck_download_queue_status",
        ),
        Index("idx_download_queue_status", "status"),
        Index("idx_download_queue_order", "priority", "queued_at"),
    )
