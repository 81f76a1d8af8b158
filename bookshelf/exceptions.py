"""Application-level exception types.

Convention:
- ``DownloadError`` subclasses are the failures a transfer can end with.
  They are recorded on the queue row as ``error`` and never retried
  automatically; a user re-enqueue restarts the job.
- Cancellation is not an exception. ``DownloadExecutor.execute`` returns
  ``DownloadOutcome.CANCELLED`` instead.
- Database errors (``sqlalchemy.exc.SQLAlchemyError``) are not wrapped here
  and always propagate to the caller.
"""


class BookshelfError(Exception):
    """Base class for bookshelf errors."""


class DownloadError(BookshelfError):
    """A transfer failed for a reason other than cancellation."""


class TransientNetworkError(DownloadError):
    """Connection, timeout or server failure while talking to the drive."""


class RemoteFileNotFoundError(DownloadError):
    """The remote file no longer exists upstream."""

    def __init__(self, file_id: str):
        super().__init__(f"Remote file not found: {file_id}")
        self.file_id = file_id


class FilesystemError(DownloadError):
    """Disk full, permission denied or another local I/O failure."""

    def __init__(self, path: str, error: OSError):
        reason = error.strerror or str(error)
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.errno = error.errno


class WorkerBusyError(BookshelfError):
    """The single download worker slot is already held."""


class MassDeletionRefusedError(BookshelfError):
    """Pruning would delete every un-downloaded item and was not confirmed."""


class InvalidImportError(BookshelfError):
    """A local file cannot be imported (missing or not a PDF)."""


class AlreadyImportedError(BookshelfError):
    """The original path was imported before."""


class PdfMetadataError(BookshelfError):
    """PDF metadata could not be read."""
