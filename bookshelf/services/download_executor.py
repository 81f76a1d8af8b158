"""Single-transfer executor: stream one remote file to disk.

The executor never retries and never cleans up after cancellation or
failure; the caller owns both decisions.
"""

import asyncio
import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Awaitable, BinaryIO, Callable, Optional

from bookshelf.config import settings
from bookshelf.exceptions import FilesystemError, RemoteFileNotFoundError, TransientNetworkError
from bookshelf.models import DownloadProgress
from bookshelf.services.coordinator import CancellationToken
from bookshelf.services.drive_service import RemoteDrive

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], Awaitable[None]]


class DownloadOutcome(str, Enum):
    """How a transfer ended when it did not raise."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def staging_path(dest_path: Path) -> Path:
    """Where bytes are written before the final rename."""
    return dest_path.with_name(dest_path.name + ".part")


def _open_staging(staging: Path) -> BinaryIO:
    staging.parent.mkdir(parents=True, exist_ok=True)
    return open(staging, "wb")


def _percent(downloaded: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, downloaded / total * 100.0)


class DownloadExecutor:
    """Streams a remote file to ``dest_path`` honoring a cancellation token."""

    def __init__(
        self,
        drive: RemoteDrive,
        progress_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._drive = drive
        self._progress_interval = (
            progress_interval if progress_interval is not None else settings.progress_interval
        )
        self._clock = clock

    async def _fetch_total_size(self, remote_file_id: str) -> int:
        """Best-effort size lookup; unknown is reported as 0."""
        try:
            return await self._drive.get_file_size(remote_file_id)
        except RemoteFileNotFoundError:
            raise
        except TransientNetworkError as e:
            logger.warning(f"Size lookup failed for {remote_file_id}, continuing without it: {e}")
            return 0

    async def execute(
        self,
        remote_file_id: str,
        dest_path: Path,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DownloadOutcome:
        """Download one file.

        Cancellation is checked before the size lookup, before opening the
        stream, once the stream is open and after every chunk. On success the
        staging file is renamed over ``dest_path``. On cancellation or error
        the staging file may be left behind for the caller to remove.
        """
        dest_path = Path(dest_path)
        staging = staging_path(dest_path)

        if token.cancelled:
            return DownloadOutcome.CANCELLED

        total = await self._fetch_total_size(remote_file_id)

        if token.cancelled:
            return DownloadOutcome.CANCELLED

        async def emit(downloaded: int):
            if on_progress is not None:
                await on_progress(DownloadProgress(
                    remote_file_id=remote_file_id,
                    progress=_percent(downloaded, total),
                    downloaded_bytes=downloaded,
                    total_bytes=total,
                ))

        downloaded = 0
        async with self._drive.open_stream(remote_file_id) as chunks:
            if token.cancelled:
                return DownloadOutcome.CANCELLED

            try:
                f = await asyncio.to_thread(_open_staging, staging)
            except OSError as e:
                raise FilesystemError(str(staging), e) from e

            with f:
                last_emit = self._clock()
                async for chunk in chunks:
                    try:
                        await asyncio.to_thread(f.write, chunk)
                    except OSError as e:
                        raise FilesystemError(str(staging), e) from e
                    downloaded += len(chunk)

                    if token.cancelled:
                        logger.info(f"Download of {remote_file_id} cancelled after {downloaded} bytes")
                        return DownloadOutcome.CANCELLED

                    now = self._clock()
                    if now - last_emit >= self._progress_interval:
                        await emit(downloaded)
                        last_emit = now

        await emit(downloaded)

        try:
            await asyncio.to_thread(os.replace, staging, dest_path)
        except OSError as e:
            raise FilesystemError(str(dest_path), e) from e

        logger.info(f"Downloaded {remote_file_id} ({downloaded} bytes) to {dest_path}")
        return DownloadOutcome.COMPLETED
