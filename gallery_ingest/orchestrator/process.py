from enum import Enum
from pathlib import Path
from typing import Optional, Callable, Dict, List, Mapping, Sequence, TYPE_CHECKING
from gallery_ingest.utils.events import EventEmitter, PhaseProgress
from gallery_ingest.models import FileHandle
from gallery_ingest.orchestrator.models import IngestResult, UploadSummary, UploadTask
import asyncio
import logging
logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .core import IngestOrchestrator


class ProcessPhase(Enum):
    """Phase of an ingestion."""
    READING = "reading"
    CHAPTERS = "chapters"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    RECONCILING = "reconciling"
    COMPLETED = "completed"


class ProcessState(Enum):
    """State of an ingestion process."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestProcess:
    """
    Process object for gallery ingestion with event-based progress tracking.

    Usage:
        process = orchestrator.ingest([Path("wedding")], gallery_id="g-1")

        process.on_phase_start(lambda phase, msg: print(f"{phase}: {msg}"))
        process.on_summary(lambda s: print(f"{s.completed}/{s.total}"))
        process.on_finish(lambda result: print("All done!"))

        result = await process.wait()
    """
    def __init__(
        self,
        orchestrator: 'IngestOrchestrator',
        gallery_id: str,
        entries: Optional[Sequence[Path]] = None,
        files: Optional[Sequence[FileHandle]] = None,
        use_folders: bool = True,
    ):
        if (entries is None) == (files is None):
            raise ValueError("Exactly one of entries or files must be given")
        self._orchestrator = orchestrator
        self.gallery_id = gallery_id
        self.entries: Optional[List[Path]] = [Path(e) for e in entries] if entries is not None else None
        self.files: Optional[List[FileHandle]] = list(files) if files is not None else None
        self.use_folders = use_folders

        self._events = EventEmitter()
        self._state = ProcessState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._result: Optional[IngestResult] = None
        self._error: Optional[Exception] = None
        self._current_phase: Optional[ProcessPhase] = None
        self._phase_progress: Dict[str, PhaseProgress] = {}

    # Event subscription methods
    def on_start(self, callback: Callable[[], None]):
        """Called when the process starts."""
        self._events.on("start", callback)

    def on_phase_start(self, callback: Callable[[str, str], None]):
        """Called when a phase starts. Receives (phase_name, message)."""
        self._events.on("phase_start", callback)

    def on_phase_progress(self, callback: Callable[[PhaseProgress], None]):
        """Called when phase progress updates. Receives PhaseProgress."""
        self._events.on("phase_progress", callback)

    def on_phase_complete(self, callback: Callable[[str, str], None]):
        """Called when a phase completes. Receives (phase_name, message)."""
        self._events.on("phase_complete", callback)

    def on_progress(self, callback: Callable[[Mapping[str, UploadTask]], None]):
        """Called with the per-file progress map on every upload change."""
        self._events.on("progress", callback)

    def on_summary(self, callback: Callable[[UploadSummary], None]):
        """Called with aggregate upload counters on every change."""
        self._events.on("summary", callback)

    def on_finish(self, callback: Callable[[IngestResult], None]):
        """Called when the ingestion ends with a result, partial or not. Receives IngestResult."""
        self._events.on("finish", callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Called when a fatal error occurs. Receives Exception."""
        self._events.on("error", callback)

    # Control methods
    async def start(self):
        """Start the ingestion (non-blocking)."""
        if self._state != ProcessState.PENDING:
            raise RuntimeError(f"Cannot start process in state: {self._state}")

        self._state = ProcessState.RUNNING
        self._task = asyncio.create_task(self._run())
        await self._events.emit("start")

    async def cancel(self):
        """
        Stop admitting new uploads and wait for in-flight ones to settle.

        Files never admitted are reported as failed with reason "cancelled".
        """
        if self._state in (ProcessState.COMPLETED, ProcessState.CANCELLED, ProcessState.FAILED):
            return

        self._cancel_requested = True
        if self._state == ProcessState.PENDING:
            self._state = ProcessState.CANCELLED
            return

        if self._task and not self._task.done():
            await asyncio.shield(self._task)

    async def wait(self) -> IngestResult:
        """Wait for the ingestion to complete and return the result."""
        if self._state == ProcessState.PENDING and not self._cancel_requested:
            await self.start()

        if self._task:
            await self._task

        if self._result is None:
            self._result = IngestResult(
                gallery_id=self.gallery_id,
                error="Process was cancelled or failed without result",
            )

        return self._result

    # State properties
    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def result(self) -> Optional[IngestResult]:
        """Final result (None if not completed yet)."""
        return self._result

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def is_running(self) -> bool:
        return self._state == ProcessState.RUNNING

    @property
    def is_completed(self) -> bool:
        return self._state == ProcessState.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self._state == ProcessState.CANCELLED

    @property
    def cancel_requested(self) -> bool:
        """Cooperative cancellation flag polled before each upload admission."""
        return self._cancel_requested

    @property
    def current_phase(self) -> Optional[ProcessPhase]:
        return self._current_phase

    @property
    def phase_progress(self) -> Dict[str, PhaseProgress]:
        return dict(self._phase_progress)

    async def set_phase(self, phase: ProcessPhase, message: str = ""):
        """Set current phase and emit phase_start event."""
        self._current_phase = phase
        logger.debug(f"Phase {phase.value}: {message}")
        await self._events.emit("phase_start", phase.value, message)

    async def emit_phase_progress(self, phase: ProcessPhase, message: str, current: int, total: int):
        """Emit phase progress event."""
        progress = PhaseProgress(phase=phase.value, message=message, current=current, total=total)
        self._phase_progress[phase.value] = progress
        await self._events.emit("phase_progress", progress)

    async def complete_phase(self, phase: ProcessPhase, message: str = ""):
        """Complete a phase and emit phase_complete event."""
        await self._events.emit("phase_complete", phase.value, message)

    async def emit_progress(self, tasks: Mapping[str, UploadTask]):
        await self._events.emit("progress", tasks)

    async def emit_summary(self, summary: UploadSummary):
        await self._events.emit("summary", summary)

    async def emit_error(self, error: Exception):
        self._error = error
        await self._events.emit("error", error)

    # Internal methods
    async def _run(self):
        """Internal method that runs the ingestion."""
        try:
            self._result = await self._orchestrator._run_pipeline(self)

            if self._cancel_requested:
                self._state = ProcessState.CANCELLED
            elif self._result.error:
                self._state = ProcessState.FAILED
            else:
                self._state = ProcessState.COMPLETED
            await self._events.emit("finish", self._result)

        except asyncio.CancelledError:
            self._state = ProcessState.CANCELLED
            raise
        except Exception as e:
            self._state = ProcessState.FAILED
            logger.error(f"Ingestion process failed: {e}", exc_info=True)
            await self.emit_error(e)
            self._result = IngestResult(gallery_id=self.gallery_id, error=str(e))
