"""Shared test fixtures for the bookshelf."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import pytest
import pytest_asyncio

from bookshelf.config import settings
from bookshelf.database import close_db, init_db
from bookshelf.exceptions import RemoteFileNotFoundError
from bookshelf.models import RemoteFile
from bookshelf.repositories import catalog_repository
from bookshelf.services.coordinator import CoordinatorState
from bookshelf.services.download_executor import DownloadExecutor
from bookshelf.services.download_manager import DownloadManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator
    from pathlib import Path


class FakeDrive:
    """In-memory ``RemoteDrive``.

    ``on_chunk`` is called with the chunk index just before each chunk is
    handed to the reader, so tests can cancel at an exact point.
    ``before_chunk`` is the awaited variant, for hooks that touch the
    database while the transfer is suspended.
    """

    def __init__(self, chunk_size: int = 10):
        self.chunk_size = chunk_size
        self.folders: dict[str, list[RemoteFile]] = {}
        self.contents: dict[str, bytes] = {}
        self.missing: set[str] = set()
        self.listing_error: Optional[Exception] = None
        self.size_error: Optional[Exception] = None
        self.stream_error: Optional[Exception] = None
        self.on_chunk: Optional[Callable[[int], None]] = None
        self.before_chunk: Optional[Callable[[int], Awaitable[None]]] = None
        self.size_calls: list[str] = []
        self.opened: list[str] = []

    def add_file(self, folder_id: str, file_id: str, name: str, data: bytes) -> RemoteFile:
        remote_file = RemoteFile(id=file_id, name=name, size=len(data), modified_time="2024-01-01T00:00:00Z")
        self.folders.setdefault(folder_id, []).append(remote_file)
        self.contents[file_id] = data
        return remote_file

    async def list_pdf_files(self, folder_id: str) -> list[RemoteFile]:
        if self.listing_error is not None:
            raise self.listing_error
        return list(self.folders.get(folder_id, []))

    async def get_file_size(self, file_id: str) -> int:
        self.size_calls.append(file_id)
        if file_id in self.missing:
            raise RemoteFileNotFoundError(file_id)
        if self.size_error is not None:
            raise self.size_error
        return len(self.contents.get(file_id, b""))

    @asynccontextmanager
    async def open_stream(self, file_id: str) -> AsyncIterator[AsyncIterator[bytes]]:
        if file_id in self.missing:
            raise RemoteFileNotFoundError(file_id)
        if self.stream_error is not None:
            raise self.stream_error
        self.opened.append(file_id)
        data = self.contents[file_id]

        async def chunks():
            for index, start in enumerate(range(0, len(data), self.chunk_size)):
                if self.on_chunk is not None:
                    self.on_chunk(index)
                if self.before_chunk is not None:
                    await self.before_chunk(index)
                await asyncio.sleep(0)
                yield data[start:start + self.chunk_size]

        yield chunks()


def fake_metadata(path: str) -> tuple[Optional[str], Optional[str]]:
    return "A Title", "An Author"


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point every path setting into the test's temp directory."""
    monkeypatch.setattr(settings, "data_dir", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "progress_interval", 0.0)


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncGenerator[None]:
    """Fresh SQLite database per test."""
    await init_db(tmp_path / "test.db")
    yield
    await close_db()


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def state() -> CoordinatorState:
    return CoordinatorState()


@pytest.fixture
def download_dir(tmp_path: Path) -> Path:
    return tmp_path / "downloads"


@pytest.fixture
def manager(drive: FakeDrive, state: CoordinatorState, download_dir: Path) -> DownloadManager:
    return DownloadManager(
        state,
        DownloadExecutor(drive, progress_interval=0.0),
        download_dir=download_dir,
        metadata_extractor=fake_metadata,
    )


@pytest.fixture
def add_cloud_item(drive: FakeDrive):
    """Create a remote file and its catalog row. Returns the RemoteFile."""

    async def _add(
        file_id: str,
        name: Optional[str] = None,
        folder_id: str = "folder-a",
        data: bytes = b"x" * 100,
    ) -> RemoteFile:
        remote_file = drive.add_file(folder_id, file_id, name or f"{file_id}.pdf", data)
        await catalog_repository.upsert_cloud_item(remote_file, folder_id)
        return remote_file

    return _add


async def wait_until_idle(state: CoordinatorState, timeout: float = 5.0) -> None:
    """Poll until a background job has released the worker slot."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while state.is_busy:
        if loop.time() > deadline:
            raise AssertionError("worker still busy")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_idle():
    return wait_until_idle


@pytest.fixture
def metadata_extractor():
    return fake_metadata
