from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import logging

from bookshelf.config import settings
from bookshelf.database import init_db, close_db
from bookshelf.routes import bookshelf, folders, queue
from bookshelf.services.coordinator import CoordinatorState
from bookshelf.services.download_executor import DownloadExecutor
from bookshelf.services.download_manager import DownloadManager
from bookshelf.services.drive_service import GoogleDriveService, RemoteDrive
from bookshelf.services.library_service import LibraryService
from bookshelf.services.recovery import run_startup_recovery
from bookshelf.services.sync_service import SyncService

VERSION = "0.1.0"
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Bookshelf Sync",
    description="PDF bookshelf mirrored from cloud folders, with a persistent download queue",
    version=VERSION
)


def install_services(target: FastAPI, drive: Optional[RemoteDrive] = None) -> None:
    """Build the per-process services and attach them to ``target.state``.

    The coordinator is created here, so each launch starts with an idle
    worker and an empty cancellation registry.
    """
    drive = drive or GoogleDriveService()
    state = CoordinatorState()
    target.state.coordinator = state
    target.state.download_manager = DownloadManager(state, DownloadExecutor(drive))
    target.state.sync_service = SyncService(drive)
    target.state.library_service = LibraryService()


@app.on_event("startup")
async def startup_event():
    logger.info(f"Bookshelf Sync v{VERSION} starting up...")
    if not settings.drive_configured:
        logger.warning("No Drive access token configured, sync and downloads will fail")

    await init_db()

    # Recovery must finish before anything can drive the queue
    await run_startup_recovery()
    install_services(app)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down...")
    manager = getattr(app.state, "download_manager", None)
    if manager is not None:
        await manager.shutdown()
    await close_db()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "version": VERSION}


app.include_router(queue.router, prefix="/api/queue", tags=["queue"])
app.include_router(bookshelf.router, prefix="/api/bookshelf", tags=["bookshelf"])
app.include_router(folders.router, prefix="/api/folders", tags=["folders"])


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    uvicorn.run("bookshelf.main:app", host=settings.host, port=settings.port)
