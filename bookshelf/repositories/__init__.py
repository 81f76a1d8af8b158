"""Repository layer for database operations."""

from bookshelf.repositories import queue_repository
from bookshelf.repositories import catalog_repository
from bookshelf.repositories import folder_repository

__all__ = ["queue_repository", "catalog_repository", "folder_repository"]
