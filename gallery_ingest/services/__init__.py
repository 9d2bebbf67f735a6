"""Services for gallery_ingest module."""
from .storage import StorageService, sanitize_name, unique_token
from .http_storage import HTTPObjectStorage
from .compression import CompressionService

__all__ = [
    "StorageService",
    "HTTPObjectStorage",
    "CompressionService",
    "sanitize_name",
    "unique_token",
]
