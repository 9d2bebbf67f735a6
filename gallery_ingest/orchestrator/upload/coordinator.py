"""Concurrent upload coordination with retry, chunking and progress reporting."""
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import asyncio
import logging

from ...errors import (
    BatchAbortedError,
    StorageUnavailableError,
    UploadPermanentError,
    UploadTransientError,
)
from ...models import FileHandle, IngestConfig, UploadedObject
from ...services.storage import StorageService
from ..models import UploadBatchResult, UploadState
from ..parallel import get_parallel_count, split_chunks
from .progress import ProgressListener, ProgressTracker, SummaryListener

logger = logging.getLogger(__name__)

_Outcome = Union[UploadedObject, UploadPermanentError]


class UploadOrchestrator:
    """
    Uploads a file list to object storage with bounded concurrency.

    - Files are processed in chunks of ``chunk_size``; a chunk is fully
      drained before the next one starts.
    - Inside a chunk, a worker pool keeps at most ``concurrency`` uploads in
      flight and admits the next file as soon as any upload settles.
    - Each file gets up to ``max_attempts`` attempts with a fixed
      ``retry_delay`` between them.
    - A failed file never aborts the batch; only StorageUnavailableError
      does, after in-flight uploads settle.
    """

    def __init__(
        self,
        storage: StorageService,
        config: Optional[IngestConfig] = None,
    ):
        """
        Args:
            storage: Storage service used for every attempt
            config: Ingest configuration
        """
        self._storage = storage
        self._config = config or IngestConfig()

    def effective_concurrency(self, total_files: int, requested: Optional[int] = None) -> int:
        requested = requested or self._config.concurrency
        if not self._config.adaptive_concurrency:
            return max(1, requested)
        return get_parallel_count(
            total_files,
            requested,
            max_parallel=self._config.max_concurrency,
            min_parallel=self._config.min_concurrency,
        )

    async def upload(
        self,
        gallery_id: str,
        files: Sequence[FileHandle],
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressListener] = None,
        on_summary: Optional[SummaryListener] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> UploadBatchResult:
        """
        Upload files.

        Args:
            gallery_id: Gallery the objects belong to
            files: Files to upload
            concurrency: Requested concurrency (a hint, see effective_concurrency)
            on_progress: Called with a read-only view of the full progress map on
                every state transition; byte counts are coalesced to at most one
                call per ``progress_interval``
            on_summary: Called with aggregate counters alongside on_progress
            is_cancelled: Checked before each admission; True stops admitting

        Returns:
            UploadBatchResult; every file is either in ``uploaded`` or ``failures``.
            Uploaded objects carry their position in ``files`` as ``source_index``.

        Raises:
            BatchAbortedError: storage became unreachable; carries the partial result
        """
        keyed: List[Tuple[str, FileHandle]] = [(f"{i}-{f.name}", f) for i, f in enumerate(files)]
        limit = self.effective_concurrency(len(keyed), concurrency)
        cancelled = is_cancelled or (lambda: False)

        result = UploadBatchResult(effective_concurrency=limit)
        tracker = ProgressTracker(
            keyed,
            on_progress=on_progress,
            on_summary=on_summary,
            byte_interval=self._config.progress_interval,
        )
        tracker.start()

        chunks = split_chunks(keyed, self._config.chunk_size) if keyed else []
        logger.info(
            f"Starting upload of {len(keyed)} files to gallery {gallery_id}: "
            f"{len(chunks)} chunk(s), concurrency {limit}"
        )

        fatal: Optional[StorageUnavailableError] = None
        # Not yet admitted: key -> position in files
        pending_keys: Dict[str, int] = {key: index for index, (key, _) in enumerate(keyed)}

        try:
            for index, chunk in enumerate(chunks, 1):
                if fatal or cancelled():
                    break
                logger.info(f"Chunk {index}/{len(chunks)}: {len(chunk)} files")
                fatal = await self._run_chunk(gallery_id, chunk, limit, tracker, result, pending_keys, cancelled)
                if fatal:
                    break
                if index < len(chunks) and self._config.chunk_pause > 0:
                    logger.debug(f"Chunk {index} done, pausing {self._config.chunk_pause}s")
                    await asyncio.sleep(self._config.chunk_pause)

            # Never admitted: cancelled or aborted
            reason = "aborted: storage unavailable" if fatal else "cancelled"
            for key, file in keyed:
                if key in pending_keys:
                    failure = UploadPermanentError(file.name, reason, attempts=0)
                    result.failures.append(failure)
                    tracker.post(key, state=UploadState.ERROR, error=reason)
            result.cancelled = bool(pending_keys) and not fatal
        finally:
            await tracker.stop()

        result.tasks = tracker.tasks
        result.summary = tracker.summary()
        logger.info(
            f"Upload finished: {result.summary.completed} uploaded, "
            f"{result.summary.failed} failed of {result.summary.total}"
        )

        if fatal:
            raise BatchAbortedError(str(fatal), result)
        return result

    async def _run_chunk(
        self,
        gallery_id: str,
        chunk: Sequence[Tuple[str, FileHandle]],
        limit: int,
        tracker: ProgressTracker,
        result: UploadBatchResult,
        pending_keys: Dict[str, int],
        cancelled: Callable[[], bool],
    ) -> Optional[StorageUnavailableError]:
        """Drain one chunk through the worker pool."""
        queue = list(chunk)
        queue.reverse()  # pop() from the end keeps enumeration order
        active: Dict[asyncio.Task, Tuple[str, FileHandle, int]] = {}
        fatal: Optional[StorageUnavailableError] = None

        while queue or active:
            while queue and len(active) < limit and not fatal and not cancelled():
                key, file = queue.pop()
                index = pending_keys.pop(key)
                task = asyncio.create_task(self._upload_with_retry(gallery_id, key, file, tracker))
                active[task] = (key, file, index)

            if not active:
                break

            try:
                done, _ = await asyncio.wait(active.keys(), return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                await self._cancel_remaining_tasks(list(active))
                raise

            for task in done:
                key, file, index = active.pop(task)
                error = asyncio.CancelledError("upload task cancelled") if task.cancelled() else task.exception()
                if error is None:
                    outcome = task.result()
                    if isinstance(outcome, UploadedObject):
                        result.uploaded.append(replace(outcome, source_index=index))
                    else:
                        result.failures.append(outcome)
                    continue

                if isinstance(error, StorageUnavailableError):
                    logger.error(f"Storage unavailable while uploading {file.name}: {error}")
                    fatal = fatal or error
                else:
                    logger.error(f"Unexpected error uploading {file.name}: {error}", exc_info=error)
                result.failures.append(UploadPermanentError(file.name, str(error) or type(error).__name__))
                tracker.post(key, state=UploadState.ERROR, error=str(error))

        return fatal

    async def _upload_with_retry(
        self,
        gallery_id: str,
        key: str,
        file: FileHandle,
        tracker: ProgressTracker,
    ) -> _Outcome:
        """Upload one file, retrying transient failures; never raises per-file errors."""
        def on_bytes(sent: int, total: int) -> None:
            tracker.post(key, bytes_transferred=sent, total_bytes=total or file.size_bytes)

        max_attempts = max(1, self._config.max_attempts)
        last_reason = "unknown error"

        for attempt in range(1, max_attempts + 1):
            tracker.post(key, state=UploadState.RUNNING, attempt=attempt, bytes_transferred=0, error=None)
            try:
                uploaded = await self._storage.upload_file(gallery_id, file, attempt, on_bytes)
            except UploadTransientError as e:
                last_reason = e.reason
                if attempt < max_attempts:
                    logger.warning(
                        f"Upload of {file.name} failed (attempt {attempt}/{max_attempts}), "
                        f"retrying in {self._config.retry_delay}s: {e.reason}"
                    )
                    tracker.post(key, state=UploadState.RETRYING, bytes_transferred=0, error=e.reason)
                    await asyncio.sleep(self._config.retry_delay)
                    continue
                break

            tracker.post(
                key,
                state=UploadState.SUCCESS,
                bytes_transferred=file.size_bytes,
                total_bytes=file.size_bytes,
            )
            logger.debug(f"Uploaded {file.name} on attempt {attempt}")
            return uploaded

        logger.error(f"Upload of {file.name} failed permanently after {max_attempts} attempts: {last_reason}")
        tracker.post(key, state=UploadState.ERROR, bytes_transferred=0, error=last_reason)
        return UploadPermanentError(file.name, last_reason, attempts=max_attempts)

    async def _cancel_remaining_tasks(self, tasks: List[asyncio.Task]) -> None:
        """Cancel all remaining tasks gracefully."""
        for task in tasks:
            if not task.done():
                task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
