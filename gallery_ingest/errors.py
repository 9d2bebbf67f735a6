"""
Error taxonomy for the ingestion pipeline.

Per-file errors are collected as instances on the result objects
(FolderTree.read_errors, UploadBatchResult.failures, ReconcileResult.misses)
and never escape the batch entry point. Only StorageUnavailableError and
BatchAbortedError propagate.
"""
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator.models import UploadBatchResult


class IngestError(Exception):
    """Base class for all ingestion errors."""


class ReadError(IngestError):
    """A local file or directory could not be read during traversal."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot read {self.path}: {reason}")


class UploadTransientError(IngestError):
    """A storage failure that is eligible for retry."""

    def __init__(self, name: str, reason: str, attempt: int = 1):
        self.name = name
        self.reason = reason
        self.attempt = attempt
        super().__init__(f"Upload of {name} failed (attempt {attempt}): {reason}")


class UploadPermanentError(IngestError):
    """Retries exhausted (or file never admitted); file excluded from results."""

    def __init__(self, name: str, reason: str, attempts: int = 0):
        self.name = name
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Upload of {name} failed permanently after {attempts} attempt(s): {reason}")


class ReconciliationMiss(IngestError):
    """No matching stage linked an uploaded object back to its chapter."""

    def __init__(self, stored_name: str, url: Optional[str] = None):
        self.stored_name = stored_name
        self.url = url
        super().__init__(f"No chapter assignment found for stored object {stored_name}")


class StorageUnavailableError(IngestError):
    """The storage collaborator cannot be reached at all."""


class BatchAbortedError(IngestError):
    """
    Raised once when a batch stops on a fatal storage error.

    The objects uploaded before the abort are kept on ``partial_result``.
    """

    def __init__(self, message: str, partial_result: "UploadBatchResult"):
        self.partial_result = partial_result
        super().__init__(message)
