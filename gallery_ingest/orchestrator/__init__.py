"""Orchestrator package - coordinates the ingestion pipeline."""
from .core import IngestOrchestrator
from .chapters import ChapterExtractor
from .folder_reader import FolderTreeReader, group_by_folder
from .models import (
    ChapterPlan,
    ChapterStrategy,
    IngestResult,
    ReconcileResult,
    UploadBatchResult,
    UploadState,
    UploadSummary,
    UploadTask,
)
from .process import IngestProcess, ProcessPhase, ProcessState
from .reconciler import ResultReconciler
from .upload import UploadOrchestrator

__all__ = [
    "IngestOrchestrator",
    "IngestProcess",
    "ProcessPhase",
    "ProcessState",
    "FolderTreeReader",
    "group_by_folder",
    "ChapterExtractor",
    "UploadOrchestrator",
    "ResultReconciler",
    "ChapterPlan",
    "ChapterStrategy",
    "IngestResult",
    "ReconcileResult",
    "UploadBatchResult",
    "UploadState",
    "UploadSummary",
    "UploadTask",
]
