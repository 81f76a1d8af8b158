import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Protocol

import httpx

from bookshelf.config import settings
from bookshelf.exceptions import RemoteFileNotFoundError, TransientNetworkError
from bookshelf.models import RemoteFile

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
LIST_PAGE_SIZE = 100


class RemoteDrive(Protocol):
    """What the bookshelf needs from a remote drive."""

    async def list_pdf_files(self, folder_id: str) -> list[RemoteFile]:
        ...

    async def get_file_size(self, file_id: str) -> int:
        ...

    def open_stream(self, file_id: str) -> AsyncContextManager[AsyncIterator[bytes]]:
        ...


class GoogleDriveService:
    """Google Drive v3 REST client over httpx."""

    def __init__(
        self,
        token_provider: Optional[Callable[[], str]] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._token_provider = token_provider or (lambda: settings.drive_access_token)
        self._api_base = (api_base or settings.drive_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.drive_timeout
        self._chunk_size = chunk_size or settings.chunk_size
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._api_base,
            headers={"Authorization": f"Bearer {self._token_provider()}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_pdf_files(self, folder_id: str) -> list[RemoteFile]:
        """List all PDFs directly inside a folder, following pagination."""
        files: list[RemoteFile] = []
        page_token: Optional[str] = None
        params = {
            "q": f"'{folder_id}' in parents and mimeType='{PDF_MIME_TYPE}' and trashed=false",
            "fields": "files(id,name,size,modifiedTime),nextPageToken",
            "orderBy": "name",
            "pageSize": str(LIST_PAGE_SIZE),
        }

        async with self._client() as client:
            while True:
                page_params = dict(params)
                if page_token:
                    page_params["pageToken"] = page_token
                try:
                    response = await client.get("/files", params=page_params)
                except httpx.HTTPError as e:
                    raise TransientNetworkError(f"Listing folder {folder_id} failed: {e}") from e
                if response.status_code == 404:
                    raise RemoteFileNotFoundError(folder_id)
                if response.is_error:
                    raise TransientNetworkError(
                        f"Listing folder {folder_id} failed: HTTP {response.status_code} {response.text}"
                    )

                data = response.json()
                for f in data.get("files", []):
                    files.append(RemoteFile(
                        id=f["id"],
                        name=f.get("name", ""),
                        size=int(f["size"]) if f.get("size") else None,
                        modified_time=f.get("modifiedTime"),
                    ))

                page_token = data.get("nextPageToken")
                if not page_token:
                    break

        logger.debug(f"Listed {len(files)} PDFs in folder {folder_id}")
        return files

    async def get_file_size(self, file_id: str) -> int:
        """Size in bytes reported by Drive, 0 if unknown."""
        async with self._client() as client:
            try:
                response = await client.get(f"/files/{file_id}", params={"fields": "size"})
            except httpx.HTTPError as e:
                raise TransientNetworkError(f"Metadata request for {file_id} failed: {e}") from e
        if response.status_code == 404:
            raise RemoteFileNotFoundError(file_id)
        if response.is_error:
            raise TransientNetworkError(f"Metadata request for {file_id} failed: HTTP {response.status_code}")
        size = response.json().get("size")
        try:
            return int(size) if size else 0
        except ValueError:
            return 0

    @asynccontextmanager
    async def open_stream(self, file_id: str) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open the file content and yield an async iterator of byte chunks."""
        async with self._client() as client:
            try:
                async with client.stream("GET", f"/files/{file_id}", params={"alt": "media"}) as response:
                    if response.status_code == 404:
                        raise RemoteFileNotFoundError(file_id)
                    if response.is_error:
                        await response.aread()
                        raise TransientNetworkError(
                            f"Download of {file_id} failed: HTTP {response.status_code} {response.text}"
                        )
                    yield response.aiter_bytes(self._chunk_size)
            except httpx.HTTPError as e:
                raise TransientNetworkError(f"Download of {file_id} failed: {e}") from e
