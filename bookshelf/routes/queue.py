from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse
from typing import Optional
import asyncio
import json

from bookshelf.exceptions import WorkerBusyError
from bookshelf.models import EnqueueRequest, QueuedDownload, QueueState, QueueStatus
from bookshelf.repositories import queue_repository
from bookshelf.routes.deps import get_download_manager
from bookshelf.services.download_manager import DownloadManager

router = APIRouter()


@router.get("", response_model=list[QueuedDownload])
async def list_queue(status: Optional[QueueStatus] = None):
    """List download jobs in processing order."""
    return await queue_repository.get_all(status)


@router.post("", response_model=QueuedDownload)
async def enqueue_download(
    request: EnqueueRequest,
    manager: DownloadManager = Depends(get_download_manager),
):
    """Queue a cloud item for download. Re-enqueueing an active job is a no-op."""
    await manager.enqueue(request.remote_file_id, request.file_name, request.priority)
    return await queue_repository.get_by_file_id(request.remote_file_id)


@router.post("/all")
async def enqueue_all(manager: DownloadManager = Depends(get_download_manager)):
    """Queue every cloud item that has no local copy yet."""
    count = await manager.enqueue_all_pending()
    return {"success": True, "queued": count}


@router.get("/state", response_model=QueueState)
async def queue_state(manager: DownloadManager = Depends(get_download_manager)):
    """Worker status, current job and pending count."""
    return await manager.get_queue_state()


@router.get("/next", response_model=Optional[QueuedDownload])
async def next_queued(manager: DownloadManager = Depends(get_download_manager)):
    """Peek at the job that would run next."""
    return await manager.get_next_queued()


@router.post("/process", response_model=Optional[QueuedDownload])
async def process_next(manager: DownloadManager = Depends(get_download_manager)):
    """Start the next queued job in the background.

    Returns the started job, or null when nothing is queued.
    """
    try:
        return await manager.start_next()
    except WorkerBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/events")
async def queue_events(manager: DownloadManager = Depends(get_download_manager)):
    """SSE stream for job and progress updates."""
    async def event_generator():
        queue = manager.subscribe()
        try:
            while True:
                event = await queue.get()
                yield {
                    "event": event["event"],
                    "data": json.dumps(event)
                }
        except asyncio.CancelledError:
            pass
        finally:
            manager.unsubscribe(queue)

    return EventSourceResponse(event_generator())


@router.delete("/history")
async def clear_history():
    """Delete completed, failed and cancelled jobs."""
    count = await queue_repository.delete_finished()
    return {"success": True, "cleared": count}


@router.delete("/{remote_file_id}/active")
async def cancel_download(
    remote_file_id: str,
    manager: DownloadManager = Depends(get_download_manager),
):
    """Cancel the in-flight download for a file."""
    if not manager.cancel(remote_file_id):
        raise HTTPException(status_code=404, detail="No active download for this file")
    return {"success": True, "message": "Download cancelled"}


@router.delete("/{remote_file_id}")
async def remove_from_queue(remote_file_id: str):
    """Remove a job that is not running. A running job must be cancelled first."""
    if await queue_repository.remove(remote_file_id):
        return {"success": True}
    job = await queue_repository.get_by_file_id(remote_file_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    raise HTTPException(status_code=409, detail="Job is downloading, cancel it first")


@router.delete("")
async def clear_queue():
    """Drop every job that has not started yet."""
    count = await queue_repository.clear_queued()
    return {"success": True, "cleared": count}
