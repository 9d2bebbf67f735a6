"""Orchestrator data models."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict

from ..errors import UploadPermanentError, ReconciliationMiss
from ..models import FileHandle, Chapter, PhotoAssignment, UploadedObject, GalleryPhoto, FolderTree


class UploadState(Enum):
    """State of a single file upload."""
    WAITING = "waiting"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.SUCCESS, UploadState.ERROR)

    @property
    def is_in_flight(self) -> bool:
        return self in (UploadState.RUNNING, UploadState.RETRYING)


class ChapterStrategy(Enum):
    """Which extraction rule produced a chapter plan."""
    FOLDERS = "folders"
    GROUPS = "groups"  # best-effort slicing, not semantically meaningful
    NONE = "none"


@dataclass
class UploadTask:
    """Progress record for one file; owned by the progress tracker."""
    key: str
    file: FileHandle
    state: UploadState = UploadState.WAITING
    attempt: int = 0
    bytes_transferred: int = 0
    total_bytes: int = 0
    error: Optional[str] = None

    @property
    def percent(self) -> float:
        if self.state == UploadState.SUCCESS:
            return 100.0
        if self.state in (UploadState.ERROR, UploadState.WAITING):
            return 0.0
        if self.total_bytes <= 0:
            return 0.0
        return min(100.0, (self.bytes_transferred / self.total_bytes) * 100)

    def snapshot(self) -> "UploadTask":
        return replace(self)


@dataclass(frozen=True)
class UploadSummary:
    """Aggregate counters over the progress map."""
    total: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    waiting: int = 0
    total_bytes: int = 0
    uploaded_bytes: int = 0
    avg_progress: float = 0.0

    @classmethod
    def from_tasks(cls, tasks: List[UploadTask]) -> "UploadSummary":
        """
        Summarize tasks.

        avg_progress is the mean of per-file percentages: success counts as
        100, error and waiting as 0.
        """
        if not tasks:
            return cls()

        completed = failed = in_progress = waiting = 0
        total_bytes = uploaded_bytes = 0
        total_percent = 0.0

        for task in tasks:
            total_bytes += task.total_bytes
            uploaded_bytes += task.bytes_transferred
            total_percent += task.percent
            if task.state == UploadState.SUCCESS:
                completed += 1
            elif task.state == UploadState.ERROR:
                failed += 1
            elif task.state.is_in_flight:
                in_progress += 1
            else:
                waiting += 1

        return cls(
            total=len(tasks),
            completed=completed,
            failed=failed,
            in_progress=in_progress,
            waiting=waiting,
            total_bytes=total_bytes,
            uploaded_bytes=uploaded_bytes,
            avg_progress=total_percent / len(tasks),
        )


@dataclass
class UploadBatchResult:
    """Result of uploading a file list."""
    uploaded: List[UploadedObject] = field(default_factory=list)
    failures: List[UploadPermanentError] = field(default_factory=list)
    tasks: Dict[str, UploadTask] = field(default_factory=dict)
    summary: UploadSummary = field(default_factory=UploadSummary)
    effective_concurrency: int = 0
    cancelled: bool = False

    @property
    def all_success(self) -> bool:
        return not self.failures

    @property
    def failed_names(self) -> List[str]:
        return [f.name for f in self.failures]


@dataclass
class ChapterPlan:
    """Chapters and per-file assignments produced by chapter extraction."""
    chapters: List[Chapter] = field(default_factory=list)
    assignments: List[PhotoAssignment] = field(default_factory=list)
    strategy: ChapterStrategy = ChapterStrategy.NONE

    @property
    def unassigned(self) -> List[PhotoAssignment]:
        return [a for a in self.assignments if a.chapter_id is None]

    @property
    def is_best_effort(self) -> bool:
        return self.strategy == ChapterStrategy.GROUPS


@dataclass
class ReconcileResult:
    """Uploaded objects merged with chapter metadata."""
    photos: List[GalleryPhoto] = field(default_factory=list)
    misses: List[ReconciliationMiss] = field(default_factory=list)
    matched_by: Dict[str, int] = field(default_factory=dict)  # stage name -> count

    @property
    def miss_count(self) -> int:
        return len(self.misses)


@dataclass
class IngestResult:
    """Result of a complete ingestion."""
    gallery_id: str
    tree: Optional[FolderTree] = None
    plan: ChapterPlan = field(default_factory=ChapterPlan)
    upload: UploadBatchResult = field(default_factory=UploadBatchResult)
    reconcile: ReconcileResult = field(default_factory=ReconcileResult)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.upload.all_success and not self.upload.cancelled

    @property
    def uploaded_count(self) -> int:
        return len(self.upload.uploaded)

    @property
    def failed_count(self) -> int:
        return len(self.upload.failures)

    @property
    def photos(self) -> List[GalleryPhoto]:
        return self.reconcile.photos

    @property
    def chapters(self) -> List[Chapter]:
        return self.plan.chapters


