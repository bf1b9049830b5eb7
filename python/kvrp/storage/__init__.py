"""Storage module for Supabase Storage uploads.

Provides:
- StorageClient for uploading attachments to public buckets
- Object naming utilities for consistent, collision-free names
- Test isolation support via configurable prefixes
"""

from kvrp.storage.client import (
    FakeStorageClient,
    StorageClient,
    StorageClientBase,
    StorageError,
    StoredObject,
)
from kvrp.storage.paths import build_object_name, get_file_extension, guess_content_type

__all__ = [
    "StorageClientBase",
    "StorageClient",
    "FakeStorageClient",
    "StorageError",
    "StoredObject",
    "build_object_name",
    "get_file_extension",
    "guess_content_type",
]
