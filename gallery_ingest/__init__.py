"""
Gallery Ingest - bulk photo ingestion into an online gallery.

Follows SOLID principles:
- Single Responsibility: reading, chapter extraction, upload and
  reconciliation are separate components
- Dependency Injection: the storage client and compressor are injected
  into the orchestrator

Usage:
    from gallery_ingest import IngestOrchestrator, IngestConfig, HTTPObjectStorage

    async with HTTPObjectStorage("https://storage.example.com", token) as client:
        async with IngestOrchestrator(client, IngestConfig(concurrency=6)) as ingest:
            process = ingest.ingest([Path("wedding")], gallery_id="g-1")
            process.on_summary(lambda s: print(f"{s.completed}/{s.total}"))
            result = await process.wait()

    for photo in result.photos:
        print(photo.name, photo.chapter_id, photo.url)
"""
from .orchestrator import (
    IngestOrchestrator,
    IngestProcess,
    IngestResult,
    FolderTreeReader,
    ChapterExtractor,
    UploadOrchestrator,
    ResultReconciler,
)
from .models import (
    FileHandle,
    Chapter,
    PhotoAssignment,
    UploadedObject,
    GalleryPhoto,
    IngestConfig,
    FolderTree,
)
from .errors import (
    IngestError,
    ReadError,
    UploadTransientError,
    UploadPermanentError,
    ReconciliationMiss,
    StorageUnavailableError,
    BatchAbortedError,
)
from .services import StorageService, HTTPObjectStorage, CompressionService

__version__ = "0.1.0"
__all__ = [
    # Main
    "IngestOrchestrator",
    "IngestProcess",
    "IngestResult",
    # Components
    "FolderTreeReader",
    "ChapterExtractor",
    "UploadOrchestrator",
    "ResultReconciler",
    # Models
    "FileHandle",
    "Chapter",
    "PhotoAssignment",
    "UploadedObject",
    "GalleryPhoto",
    "IngestConfig",
    "FolderTree",
    # Errors
    "IngestError",
    "ReadError",
    "UploadTransientError",
    "UploadPermanentError",
    "ReconciliationMiss",
    "StorageUnavailableError",
    "BatchAbortedError",
    # Services
    "StorageService",
    "HTTPObjectStorage",
    "CompressionService",
]
