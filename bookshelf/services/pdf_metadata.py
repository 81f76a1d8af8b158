from typing import Callable, Optional

import fitz  # PyMuPDF

from bookshelf.exceptions import PdfMetadataError

MetadataExtractor = Callable[[str], tuple[Optional[str], Optional[str]]]


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def extract_metadata(path: str) -> tuple[Optional[str], Optional[str]]:
    """Read (title, author) from a PDF's document info. Blank values become None."""
    try:
        with fitz.open(path) as doc:
            metadata = doc.metadata or {}
    except Exception as e:
        raise PdfMetadataError(f"Cannot read PDF metadata from {path}: {e}") from e
    return _clean(metadata.get("title")), _clean(metadata.get("author"))
