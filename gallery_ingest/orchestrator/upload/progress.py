"""
Progress tracking for batch uploads.

The progress map is owned by a single consumer task. Upload workers never
touch it; they post updates onto a queue and the consumer applies them in
order, then notifies listeners with a read-only view of the map.

State transitions are announced one by one. Byte-count updates are
coalesced: at most one announcement per ``byte_interval`` seconds, with a
trailing announcement once the interval has passed.
"""
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple
import asyncio
import logging

from ...models import FileHandle
from ...utils.events import EventEmitter
from ..models import UploadState, UploadSummary, UploadTask

logger = logging.getLogger(__name__)

ProgressListener = Callable[[Mapping[str, UploadTask]], Any]
SummaryListener = Callable[[UploadSummary], Any]

BYTE_FIELDS = frozenset({"bytes_transferred", "total_bytes"})
DEFAULT_BYTE_INTERVAL = 0.1


@dataclass
class _Update:
    key: str
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def bytes_only(self) -> bool:
        return bool(self.changes) and self.changes.keys() <= BYTE_FIELDS


_STOP = object()


class ProgressTracker:
    """
    Owns the per-file progress map of one batch.

    Usage:
        tracker = ProgressTracker(files, on_progress=..., on_summary=...)
        tracker.start()
        tracker.post(key, state=UploadState.RUNNING, attempt=1)
        ...
        await tracker.stop()
        tasks = tracker.tasks
    """

    def __init__(
        self,
        files: Iterable[Tuple[str, FileHandle]],
        on_progress: Optional[ProgressListener] = None,
        on_summary: Optional[SummaryListener] = None,
        byte_interval: float = DEFAULT_BYTE_INTERVAL,
    ):
        self._tasks: Dict[str, UploadTask] = {
            key: UploadTask(key=key, file=file, total_bytes=file.size_bytes)
            for key, file in files
        }
        self._snapshots: Dict[str, UploadTask] = {key: task.snapshot() for key, task in self._tasks.items()}
        self._view: Mapping[str, UploadTask] = MappingProxyType(self._snapshots)

        # Aggregates kept in step with every applied update
        self._state_counts: Counter = Counter(task.state for task in self._tasks.values())
        self._total_bytes = sum(task.total_bytes for task in self._tasks.values())
        self._uploaded_bytes = 0
        self._in_flight_percent: Dict[str, float] = {}

        self._events = EventEmitter()
        if on_progress:
            self._events.on("progress", on_progress)
        if on_summary:
            self._events.on("summary", on_summary)
        self._byte_interval = max(0.0, byte_interval)
        self._last_notify = float("-inf")
        self._dirty = False
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._consumer is not None:
            raise RuntimeError("ProgressTracker already started")
        self._queue = asyncio.Queue()
        self._consumer = asyncio.create_task(self._run())

    def post(self, key: str, **changes) -> None:
        """Queue a change for one file. Never blocks."""
        if self._queue is None:
            raise RuntimeError("ProgressTracker not started")
        self._queue.put_nowait(_Update(key, changes))

    async def flush(self) -> None:
        """Wait until every posted update has been applied and announced."""
        if self._queue is not None:
            await self._queue.join()
            if self._dirty:
                await self._notify()

    async def stop(self) -> None:
        """Apply pending updates, announce coalesced ones and stop the consumer."""
        if self._consumer is None:
            return
        self._queue.put_nowait(_STOP)
        await self._consumer
        self._consumer = None
        if self._dirty:
            await self._notify()

    @property
    def tasks(self) -> Dict[str, UploadTask]:
        """Snapshot of the progress map."""
        return dict(self._snapshots)

    @property
    def view(self) -> Mapping[str, UploadTask]:
        """Read-only live view of the progress map."""
        return self._view

    def summary(self) -> UploadSummary:
        total = len(self._tasks)
        if not total:
            return UploadSummary()
        counts = self._state_counts
        completed = counts[UploadState.SUCCESS]
        # Success counts as 100, error and waiting as 0
        percent = 100.0 * completed + sum(self._in_flight_percent.values())
        return UploadSummary(
            total=total,
            completed=completed,
            failed=counts[UploadState.ERROR],
            in_progress=counts[UploadState.RUNNING] + counts[UploadState.RETRYING],
            waiting=counts[UploadState.WAITING],
            total_bytes=self._total_bytes,
            uploaded_bytes=self._uploaded_bytes,
            avg_progress=percent / total,
        )

    def count(self, *states: UploadState) -> int:
        return sum(self._state_counts[state] for state in states)

    def _flush_delay(self) -> Optional[float]:
        if not self._dirty:
            return None
        loop = asyncio.get_running_loop()
        return max(0.0, self._last_notify + self._byte_interval - loop.time())

    async def _next(self):
        delay = self._flush_delay()
        if delay is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=delay)
        except asyncio.TimeoutError:
            return None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            update = await self._next()
            if update is None:
                # Trailing byte counts
                await self._notify()
                continue
            try:
                if update is _STOP:
                    return
                if not self._apply(update):
                    continue
                if not update.bytes_only:
                    await self._notify()
                elif loop.time() - self._last_notify >= self._byte_interval:
                    await self._notify()
                else:
                    self._dirty = True
            except Exception as e:
                logger.error(f"Progress update failed for {getattr(update, 'key', '?')}: {e}")
            finally:
                self._queue.task_done()

    def _apply(self, update: _Update) -> bool:
        task = self._tasks.get(update.key)
        if task is None:
            logger.debug(f"Progress update for unknown file key: {update.key}")
            return False

        # Late byte counts must not reopen a settled file
        if task.state.is_terminal and "state" not in update.changes:
            return False

        self._retire(task)
        for name, value in update.changes.items():
            setattr(task, name, value)
        self._admit(task)
        self._snapshots[update.key] = task.snapshot()
        return True

    def _retire(self, task: UploadTask) -> None:
        self._state_counts[task.state] -= 1
        self._total_bytes -= task.total_bytes
        self._uploaded_bytes -= task.bytes_transferred

    def _admit(self, task: UploadTask) -> None:
        self._state_counts[task.state] += 1
        self._total_bytes += task.total_bytes
        self._uploaded_bytes += task.bytes_transferred
        if task.state.is_in_flight:
            self._in_flight_percent[task.key] = task.percent
        else:
            self._in_flight_percent.pop(task.key, None)

    async def _notify(self) -> None:
        self._dirty = False
        self._last_notify = asyncio.get_running_loop().time()
        if self._events.has_listeners("progress"):
            await self._events.emit("progress", self._view)
        if self._events.has_listeners("summary"):
            await self._events.emit("summary", self.summary())
