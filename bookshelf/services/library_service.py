"""Local PDF imports and local-copy management."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

from bookshelf.config import settings
from bookshelf.exceptions import AlreadyImportedError, InvalidImportError, PdfMetadataError
from bookshelf.models import BookshelfItem, ImportResult, LocalItem
from bookshelf.repositories import catalog_repository
from bookshelf.services.pdf_metadata import MetadataExtractor, extract_metadata

logger = logging.getLogger(__name__)


def _is_pdf(path: Path) -> bool:
    return path.suffix.lower() == ".pdf"


def _claim_destination(directory: Path, file_name: str) -> tuple[Path, BinaryIO]:
    """Create and open the first free name of ``name.pdf``, ``name_1.pdf``...

    Names are claimed with exclusive creation, so concurrent imports of
    same-named files never share a destination.
    """
    stem = Path(file_name).stem or "file"
    candidate = directory / file_name
    counter = 0
    while True:
        try:
            return candidate, open(candidate, "xb")
        except FileExistsError:
            counter += 1
            candidate = directory / f"{stem}_{counter}.pdf"


class LibraryService:
    """Manages files copied into the bookshelf's own storage."""

    def __init__(
        self,
        library_dir: Optional[Path] = None,
        metadata_extractor: MetadataExtractor = extract_metadata,
    ):
        self._library_dir = Path(library_dir) if library_dir else settings.download_path / "local"
        self._extract_metadata = metadata_extractor

    async def import_file(self, source_path: str) -> LocalItem:
        """Copy a PDF into managed storage and add it to the bookshelf."""
        source = Path(source_path)
        if not source.is_file():
            raise InvalidImportError(f"File not found: {source_path}")
        if not _is_pdf(source):
            raise InvalidImportError(f"Not a PDF file: {source_path}")

        if await catalog_repository.get_local_by_original_path(source_path):
            raise AlreadyImportedError(f"File already imported: {source_path}")

        def copy() -> tuple[Path, int]:
            self._library_dir.mkdir(parents=True, exist_ok=True)
            dest, out = _claim_destination(self._library_dir, source.name)
            try:
                with out, open(source, "rb") as src:
                    shutil.copyfileobj(src, out)
                shutil.copystat(source, dest)
            except OSError:
                dest.unlink(missing_ok=True)
                raise
            return dest, dest.stat().st_size

        dest, file_size = await asyncio.to_thread(copy)

        try:
            item = await catalog_repository.insert_local_item(
                file_path=str(dest),
                original_path=source_path,
                file_name=source.name,
                file_size=file_size,
            )
        except Exception:
            # dest was created by this call and has no catalog row to own it
            await asyncio.to_thread(dest.unlink, True)
            raise

        try:
            title, author = await asyncio.to_thread(self._extract_metadata, item.file_path)
        except PdfMetadataError as e:
            logger.warning(f"Metadata extraction failed for {item.file_path}: {e}")
        else:
            if title is not None or author is not None:
                await catalog_repository.update_local_metadata(item.id, title, author)
                item = item.model_copy(update={"title": title, "author": author})
        return item

    async def import_files(self, paths: list[str]) -> ImportResult:
        result = ImportResult()
        for path in paths:
            await self._import_counted(path, result)
        return result

    async def import_directory(self, dir_path: str) -> ImportResult:
        """Import every PDF directly inside ``dir_path`` (not recursive)."""
        directory = Path(dir_path)
        if not directory.is_dir():
            raise InvalidImportError(f"Directory not found: {dir_path}")

        entries = await asyncio.to_thread(lambda: sorted(directory.iterdir()))
        result = ImportResult()
        for entry in entries:
            if entry.is_file() and _is_pdf(entry):
                await self._import_counted(str(entry), result)
        return result

    async def _import_counted(self, path: str, result: ImportResult):
        try:
            await self.import_file(path)
            result.imported_count += 1
        except AlreadyImportedError:
            result.skipped_count += 1
        except (InvalidImportError, OSError) as e:
            logger.error(f"Failed to import {path}: {e}")
            result.error_count += 1

    async def delete_local_item(self, item_id: int) -> bool:
        """Remove a local item and its managed copy."""
        item = await catalog_repository.get_local_item(item_id)
        if item is None:
            return False
        await asyncio.to_thread(Path(item.file_path).unlink, True)
        return await catalog_repository.delete_local_item(item_id)

    async def delete_cloud_local_copy(self, remote_file_id: str) -> bool:
        """Delete a downloaded file and return its cloud item to pending."""
        item = await catalog_repository.get_cloud_item(remote_file_id)
        if item is None:
            return False
        if item.local_path:
            await asyncio.to_thread(Path(item.local_path).unlink, True)
        await catalog_repository.reset_cloud_item(remote_file_id)
        logger.info(f"Deleted local copy of {remote_file_id}")
        return True

    async def get_items(self) -> list[BookshelfItem]:
        """Cloud and local items merged, recently opened first, then by name."""
        items = [BookshelfItem.from_cloud(i) for i in await catalog_repository.get_cloud_items()]
        items.extend(BookshelfItem.from_local(i) for i in await catalog_repository.get_local_items())
        opened = sorted(
            (i for i in items if i.last_opened is not None),
            key=lambda i: i.last_opened,
            reverse=True,
        )
        unopened = sorted((i for i in items if i.last_opened is None), key=lambda i: i.file_name)
        return opened + unopened
