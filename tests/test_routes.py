"""HTTP-level tests for the bookshelf API."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bookshelf.main import app, install_services
from bookshelf.models import RemoteFile
from bookshelf.repositories import catalog_repository, folder_repository, queue_repository
from bookshelf.services.library_service import LibraryService
from bookshelf.services.sync_service import SyncService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from bookshelf.services.coordinator import CoordinatorState
    from bookshelf.services.download_manager import DownloadManager
    from tests.conftest import FakeDrive


@pytest_asyncio.fixture
async def client(
    db,
    drive: FakeDrive,
    manager: DownloadManager,
    metadata_extractor,
    tmp_path: Path,
) -> AsyncGenerator[AsyncClient]:
    """Test client with services wired onto app state; startup is not run."""
    app.state.coordinator = manager.state
    app.state.download_manager = manager
    app.state.sync_service = SyncService(drive)
    app.state.library_service = LibraryService(
        library_dir=tmp_path / "library", metadata_extractor=metadata_extractor
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestQueueApi:
    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent(self, client: AsyncClient) -> None:
        body = {"remote_file_id": "f1", "file_name": "a.pdf", "priority": 0}
        first = await client.post("/api/queue", json=body)
        second = await client.post("/api/queue", json={**body, "priority": 5})

        assert first.status_code == 200
        assert second.json()["priority"] == 5
        jobs = (await client.get("/api/queue")).json()
        assert len(jobs) == 1
        assert jobs[0]["status"] == "queued"

    @pytest.mark.asyncio
    async def test_process_downloads_next_job(
        self, client: AsyncClient, add_cloud_item, state: CoordinatorState, wait_idle
    ) -> None:
        await add_cloud_item("f1", "a.pdf")
        await client.post("/api/queue", json={"remote_file_id": "f1", "file_name": "a.pdf"})

        resp = await client.post("/api/queue/process")
        assert resp.status_code == 200
        assert resp.json()["remote_file_id"] == "f1"
        await wait_idle(state)

        snapshot = (await client.get("/api/queue/state")).json()
        assert snapshot["is_running"] is False
        assert snapshot["pending_count"] == 0
        jobs = (await client.get("/api/queue", params={"status": "completed"})).json()
        assert [j["remote_file_id"] for j in jobs] == ["f1"]

    @pytest.mark.asyncio
    async def test_process_when_busy(self, client: AsyncClient, state: CoordinatorState) -> None:
        await client.post("/api/queue", json={"remote_file_id": "f1", "file_name": "a.pdf"})
        assert state.try_acquire()

        resp = await client.post("/api/queue/process")

        assert resp.status_code == 409
        state.release()

    @pytest.mark.asyncio
    async def test_process_with_empty_queue(self, client: AsyncClient) -> None:
        resp = await client.post("/api/queue/process")
        assert resp.status_code == 200
        assert resp.json() is None

    @pytest.mark.asyncio
    async def test_cancel_without_active_download(self, client: AsyncClient) -> None:
        resp = await client.delete("/api/queue/f1/active")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_next_remove_and_clear(self, client: AsyncClient) -> None:
        await client.post("/api/queue", json={"remote_file_id": "low", "file_name": "l.pdf"})
        await client.post("/api/queue", json={"remote_file_id": "high", "file_name": "h.pdf", "priority": 3})
        await client.post("/api/queue", json={"remote_file_id": "other", "file_name": "o.pdf"})

        assert (await client.get("/api/queue/next")).json()["remote_file_id"] == "high"
        assert (await client.delete("/api/queue/high")).status_code == 200
        assert (await client.delete("/api/queue/high")).status_code == 404
        cleared = (await client.delete("/api/queue")).json()
        assert cleared["cleared"] == 2
        assert (await client.get("/api/queue")).json() == []

    @pytest.mark.asyncio
    async def test_remove_running_job_conflicts(self, client: AsyncClient) -> None:
        await client.post("/api/queue", json={"remote_file_id": "f1", "file_name": "a.pdf"})
        await queue_repository.mark_processing("f1")

        resp = await client.delete("/api/queue/f1")

        assert resp.status_code == 409
        jobs = (await client.get("/api/queue")).json()
        assert jobs[0]["status"] == "processing"

    @pytest.mark.asyncio
    async def test_enqueue_all(self, client: AsyncClient, add_cloud_item) -> None:
        await add_cloud_item("f1")
        await add_cloud_item("f2")

        resp = await client.post("/api/queue/all")

        assert resp.json()["queued"] == 2
        assert (await client.get("/api/queue/state")).json()["pending_count"] == 2


class TestFoldersApi:
    @pytest.mark.asyncio
    async def test_add_list_deactivate(self, client: AsyncClient) -> None:
        resp = await client.post("/api/folders", json={"folder_id": "folder-a", "folder_name": "Books"})
        assert resp.status_code == 200
        assert resp.json()["active"] is True

        assert (await client.delete("/api/folders/folder-a")).status_code == 200
        assert (await client.get("/api/folders", params={"active_only": True})).json() == []
        folders = (await client.get("/api/folders")).json()
        assert folders[0]["active"] is False
        assert (await client.delete("/api/folders/unknown")).status_code == 404


class TestBookshelfApi:
    @pytest.mark.asyncio
    async def test_sync_requires_confirmation_without_folders(self, client: AsyncClient) -> None:
        await catalog_repository.upsert_cloud_item(RemoteFile(id="p1", name="p1.pdf"), "folder-a")

        refused = await client.post("/api/bookshelf/sync")
        assert refused.status_code == 409

        confirmed = await client.post("/api/bookshelf/sync", params={"confirm_empty": True})
        assert confirmed.status_code == 200
        assert confirmed.json()["removed_files"] == 1

    @pytest.mark.asyncio
    async def test_sync_lists_active_folders(self, client: AsyncClient, drive: FakeDrive) -> None:
        await folder_repository.add_folder("folder-a", "Books")
        drive.add_file("folder-a", "f1", "a.pdf", b"a")

        resp = await client.post("/api/bookshelf/sync")

        assert resp.status_code == 200
        assert resp.json()["new_files"] == 1
        items = (await client.get("/api/bookshelf/items")).json()
        assert [i["remote_file_id"] for i in items] == ["f1"]
        assert items[0]["download_status"] == "pending"

    @pytest.mark.asyncio
    async def test_import_and_favorite(self, client: AsyncClient, tmp_path: Path) -> None:
        source = tmp_path / "book.pdf"
        source.write_bytes(b"%PDF")

        resp = await client.post("/api/bookshelf/import/file", json={"path": str(source)})
        assert resp.status_code == 200
        item_id = resp.json()["id"]

        duplicate = await client.post("/api/bookshelf/import/file", json={"path": str(source)})
        assert duplicate.status_code == 409

        toggled = await client.post(f"/api/bookshelf/local/{item_id}/favorite")
        assert toggled.json()["favorite"] is True
        assert (await client.post("/api/bookshelf/cloud/999/favorite")).status_code == 404

        items = (await client.get("/api/bookshelf/items")).json()
        assert items[0]["source"] == "local"
        assert items[0]["favorite"] is True

    @pytest.mark.asyncio
    async def test_import_rejects_non_pdf(self, client: AsyncClient, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")

        resp = await client.post("/api/bookshelf/import/file", json={"path": str(notes)})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_last_opened_unknown_path(self, client: AsyncClient) -> None:
        resp = await client.post("/api/bookshelf/last-opened", json={"path": "/nowhere.pdf"})
        assert resp.status_code == 404


class TestInstallServices:
    def test_fresh_idle_coordinator_per_app(self, drive: FakeDrive) -> None:
        first = FastAPI()
        second = FastAPI()
        install_services(first, drive)
        install_services(second, drive)

        assert first.state.coordinator is not second.state.coordinator
        assert not first.state.coordinator.is_busy
        assert first.state.download_manager.state is first.state.coordinator
        assert isinstance(first.state.sync_service, SyncService)
        assert isinstance(first.state.library_service, LibraryService)
