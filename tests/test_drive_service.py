"""Tests for the Google Drive REST client."""

from __future__ import annotations

import httpx
import pytest

from bookshelf.exceptions import RemoteFileNotFoundError, TransientNetworkError
from bookshelf.services.drive_service import GoogleDriveService

API_BASE = "https://drive.test/drive/v3"


def make_service(handler) -> GoogleDriveService:
    return GoogleDriveService(
        token_provider=lambda: "secret-token",
        api_base=API_BASE,
        chunk_size=4,
        transport=httpx.MockTransport(handler),
    )


class TestListPdfFiles:
    @pytest.mark.asyncio
    async def test_follows_pagination(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            assert request.url.path == "/drive/v3/files"
            if request.url.params.get("pageToken") == "page-2":
                return httpx.Response(200, json={"files": [{"id": "f3", "name": "c.pdf"}]})
            return httpx.Response(200, json={
                "files": [
                    {"id": "f1", "name": "a.pdf", "size": "1024", "modifiedTime": "2024-01-01T00:00:00Z"},
                    {"id": "f2", "name": "b.pdf", "size": "2048"},
                ],
                "nextPageToken": "page-2",
            })

        files = await make_service(handler).list_pdf_files("folder-1")

        assert [f.id for f in files] == ["f1", "f2", "f3"]
        assert files[0].size == 1024
        assert files[0].modified_time == "2024-01-01T00:00:00Z"
        assert files[2].size is None
        assert len(seen) == 2
        query = seen[0].url.params["q"]
        assert "'folder-1' in parents" in query
        assert "application/pdf" in query
        assert seen[0].headers["Authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_missing_folder(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": {"message": "File not found"}})

        with pytest.raises(RemoteFileNotFoundError):
            await make_service(handler).list_pdf_files("gone")

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="backend unavailable")

        with pytest.raises(TransientNetworkError, match="503"):
            await make_service(handler).list_pdf_files("folder-1")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientNetworkError):
            await make_service(handler).list_pdf_files("folder-1")


class TestGetFileSize:
    @pytest.mark.asyncio
    async def test_reports_size(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/drive/v3/files/f1"
            return httpx.Response(200, json={"size": "12345"})

        assert await make_service(handler).get_file_size("f1") == 12345

    @pytest.mark.asyncio
    async def test_unknown_size_is_zero(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        assert await make_service(handler).get_file_size("f1") == 0

    @pytest.mark.asyncio
    async def test_missing_file(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(RemoteFileNotFoundError):
            await make_service(handler).get_file_size("gone")


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_streams_content_in_chunks(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["alt"] == "media"
            return httpx.Response(200, content=b"0123456789")

        chunks = []
        async with make_service(handler).open_stream("f1") as stream:
            async for chunk in stream:
                chunks.append(chunk)

        assert b"".join(chunks) == b"0123456789"
        assert all(len(c) <= 4 for c in chunks)

    @pytest.mark.asyncio
    async def test_missing_file(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(RemoteFileNotFoundError):
            async with make_service(handler).open_stream("gone"):
                pass

    @pytest.mark.asyncio
    async def test_forbidden_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, text="rate limited")

        with pytest.raises(TransientNetworkError, match="403"):
            async with make_service(handler).open_stream("f1"):
                pass
