import asyncio
import logging
from pathlib import Path
from typing import Optional

from bookshelf.config import settings
from bookshelf.exceptions import (
    DownloadError,
    PdfMetadataError,
    RemoteFileNotFoundError,
    WorkerBusyError,
)
from bookshelf.models import DownloadProgress, DownloadStatus, QueuedDownload, QueueState, QueueStatus
from bookshelf.repositories import catalog_repository, queue_repository
from bookshelf.services.coordinator import CancellationToken, CoordinatorState
from bookshelf.services.download_executor import DownloadExecutor, DownloadOutcome, staging_path
from bookshelf.services.pdf_metadata import MetadataExtractor, extract_metadata

logger = logging.getLogger(__name__)

# Prefix on queue error messages for files deleted upstream
NOT_FOUND_PREFIX = "not_found: "
NOT_IN_CATALOG_MESSAGE = "Item is no longer in the catalog"


def _safe_name(name: str, fallback: str) -> str:
    name = Path(name.replace("\\", "/")).name.strip()
    if name in ("", ".", ".."):
        return fallback
    return name


class DownloadManager:
    """Drives the download queue one job at a time.

    Holds no scheduling loop: a caller polls ``process_next`` or
    ``start_next`` whenever it wants the next job to run.
    """

    def __init__(
        self,
        state: CoordinatorState,
        executor: DownloadExecutor,
        download_dir: Optional[Path] = None,
        metadata_extractor: MetadataExtractor = extract_metadata,
    ):
        self._state = state
        self._executor = executor
        self._download_dir = Path(download_dir) if download_dir else settings.download_path
        self._extract_metadata = metadata_extractor
        self._subscribers: list[asyncio.Queue] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> CoordinatorState:
        return self._state

    def dest_path_for(self, remote_file_id: str, file_name: str) -> Path:
        """Managed location for a cloud item's local copy."""
        folder = _safe_name(remote_file_id, "unknown")
        return self._download_dir / "cloud" / folder / _safe_name(file_name, f"{folder}.pdf")

    # Queue operations

    async def enqueue(self, remote_file_id: str, file_name: str, priority: int = 0) -> int:
        job_id = await queue_repository.enqueue(remote_file_id, file_name, priority)
        job = await queue_repository.get_by_file_id(remote_file_id)
        if job:
            self._notify_job(job)
        return job_id

    async def enqueue_all_pending(self) -> int:
        return await queue_repository.enqueue_all_pending()

    async def get_next_queued(self) -> Optional[QueuedDownload]:
        return await queue_repository.get_next_queued()

    def try_acquire_worker(self) -> bool:
        return self._state.try_acquire()

    def release_worker(self) -> None:
        self._state.release()

    def cancel(self, remote_file_id: str) -> bool:
        """Request cancellation of the active download for a file."""
        return self._state.cancel(remote_file_id)

    async def get_queue_state(self) -> QueueState:
        return QueueState(
            is_running=self._state.is_busy,
            current_item=await queue_repository.get_processing(),
            pending_count=await queue_repository.get_pending_count(),
        )

    # Driving

    async def process_next(self) -> Optional[QueuedDownload]:
        """Run the next queued job to completion under the worker slot.

        Returns the finished job, or None if nothing is queued. Raises
        WorkerBusyError if another job holds the slot.
        """
        with self._state.worker():
            job = await queue_repository.get_next_queued()
            if job is None:
                return None
            return await self.run_job(job)

    async def start_next(self) -> Optional[QueuedDownload]:
        """Like ``process_next`` but runs the job in a background task.

        The worker slot is taken and the cancellation token registered
        before returning, so the job can be cancelled immediately.
        """
        if not self._state.try_acquire():
            raise WorkerBusyError("A download is already running")
        try:
            job = await queue_repository.get_next_queued()
        except Exception:
            self._state.release()
            raise
        if job is None:
            self._state.release()
            return None

        token = self._state.register(job.remote_file_id)
        task = asyncio.create_task(self._run_in_background(job, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def _run_in_background(self, job: QueuedDownload, token: CancellationToken):
        try:
            await self.run_job(job, token)
        except Exception:
            logger.exception(f"Download job for {job.remote_file_id} failed unexpectedly")
        finally:
            self._state.release()

    async def run_job(
        self,
        job: QueuedDownload,
        token: Optional[CancellationToken] = None,
    ) -> Optional[QueuedDownload]:
        """Execute one job and record its outcome in the queue and catalog.

        The caller must hold the worker slot.
        """
        remote_file_id = job.remote_file_id
        if token is None:
            token = self._state.register(remote_file_id)
        dest_path = self.dest_path_for(remote_file_id, job.file_name)

        try:
            if not await queue_repository.mark_processing(remote_file_id):
                logger.info(f"Job for {remote_file_id} is no longer queued, skipping")
                return await queue_repository.get_by_file_id(remote_file_id)
            await self._notify_current(remote_file_id)

            item = await catalog_repository.get_cloud_item(remote_file_id)
            if item is None:
                logger.warning(f"{remote_file_id} is no longer in the catalog, skipping transfer")
                await queue_repository.mark_terminal(remote_file_id, QueueStatus.ERROR, NOT_IN_CATALOG_MESSAGE)
                return await self._notify_current(remote_file_id)

            if (
                item.download_status == DownloadStatus.COMPLETED
                and item.local_path
                and await asyncio.to_thread(Path(item.local_path).exists)
            ):
                logger.info(f"{remote_file_id} already downloaded, skipping transfer")
                await queue_repository.mark_terminal(remote_file_id, QueueStatus.COMPLETED)
                return await self._notify_current(remote_file_id)

            await catalog_repository.update_download_state(remote_file_id, DownloadStatus.DOWNLOADING, 0.0)

            try:
                outcome = await self._executor.execute(
                    remote_file_id, dest_path, token, on_progress=self._on_progress
                )
            except DownloadError as e:
                await self._remove_partial(dest_path)
                await self._record_failure(remote_file_id, e)
                return await self._notify_current(remote_file_id)
            except Exception as e:
                await self._remove_partial(dest_path)
                await queue_repository.mark_terminal(remote_file_id, QueueStatus.ERROR, str(e) or type(e).__name__)
                await catalog_repository.update_download_state(remote_file_id, DownloadStatus.ERROR, 0.0)
                raise

            # A cancel that raced with the final chunk still wins; after
            # finish() no further cancel is accepted
            cancelled = self._state.finish(remote_file_id)
            if outcome == DownloadOutcome.CANCELLED or cancelled:
                await self._remove_partial(dest_path, include_final=True)
                await catalog_repository.update_download_state(remote_file_id, DownloadStatus.PENDING, 0.0)
                await queue_repository.mark_terminal(remote_file_id, QueueStatus.CANCELLED)
                logger.info(f"Download of {remote_file_id} cancelled")
                return await self._notify_current(remote_file_id)

            if not await catalog_repository.mark_cloud_completed(remote_file_id, str(dest_path)):
                # Pruned from the catalog mid-transfer
                logger.warning(f"{remote_file_id} left the catalog during download, discarding file")
                await self._remove_partial(dest_path, include_final=True)
                await queue_repository.mark_terminal(remote_file_id, QueueStatus.ERROR, NOT_IN_CATALOG_MESSAGE)
                return await self._notify_current(remote_file_id)

            await queue_repository.mark_terminal(remote_file_id, QueueStatus.COMPLETED)
            await self._save_metadata(remote_file_id, dest_path)
            return await self._notify_current(remote_file_id)
        finally:
            self._state.unregister(remote_file_id)

    async def _record_failure(self, remote_file_id: str, error: DownloadError):
        if isinstance(error, RemoteFileNotFoundError):
            message = f"{NOT_FOUND_PREFIX}{error}"
        else:
            message = str(error)
        logger.warning(f"Download of {remote_file_id} failed: {message}")
        await catalog_repository.update_download_state(remote_file_id, DownloadStatus.ERROR, 0.0)
        await queue_repository.mark_terminal(remote_file_id, QueueStatus.ERROR, message)

    async def _remove_partial(self, dest_path: Path, include_final: bool = False):
        """Delete the staging file (and the final file when a cancel raced the rename)."""
        paths = [staging_path(dest_path)]
        if include_final:
            paths.append(dest_path)

        def remove():
            for path in paths:
                path.unlink(missing_ok=True)

        try:
            await asyncio.to_thread(remove)
        except OSError as e:
            logger.warning(f"Could not remove partial download {dest_path}: {e}")

    async def _save_metadata(self, remote_file_id: str, path: Path):
        """Store PDF title/author. Failures are logged, never fatal."""
        try:
            title, author = await asyncio.to_thread(self._extract_metadata, str(path))
        except PdfMetadataError as e:
            logger.warning(f"Metadata extraction failed for {path}: {e}")
            return
        if title is not None or author is not None:
            await catalog_repository.update_cloud_metadata(remote_file_id, title, author)

    async def _on_progress(self, progress: DownloadProgress):
        await queue_repository.update_progress(progress.remote_file_id, progress.progress)
        await catalog_repository.update_download_progress(progress.remote_file_id, progress.progress)
        self._broadcast({"event": "progress", **progress.model_dump(mode="json")})

    # Subscribers

    def subscribe(self) -> asyncio.Queue:
        """Subscribe to job and progress events."""
        queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _broadcast(self, event: dict):
        for queue in self._subscribers:
            queue.put_nowait(event)

    def _notify_job(self, job: QueuedDownload):
        self._broadcast({"event": "job", **job.model_dump(mode="json")})

    async def _notify_current(self, remote_file_id: str) -> Optional[QueuedDownload]:
        job = await queue_repository.get_by_file_id(remote_file_id)
        if job:
            self._notify_job(job)
        return job

    async def shutdown(self):
        """Stop background jobs. Their rows stay processing and are requeued on next launch."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
