"""Core orchestrator - coordinates the ingestion pipeline."""
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence
import asyncio
import logging

from ..errors import BatchAbortedError, StorageUnavailableError
from ..models import FileHandle, FolderTree, IngestConfig, PhotoAssignment, UploadedObject, mime_accepted
from ..protocols import ICompressor, IObjectStorage
from ..services.storage import StorageService

from .chapters import ChapterExtractor
from .folder_reader import FolderTreeReader, group_by_folder, mime_filter
from .models import ChapterPlan, IngestResult, ReconcileResult, UploadBatchResult
from .process import IngestProcess, ProcessPhase
from .reconciler import ResultReconciler
from .upload import UploadOrchestrator

logger = logging.getLogger(__name__)

PhaseProgressCallback = Callable[[int, int], Awaitable[None]]


class IngestOrchestrator:
    """
    Orchestrates gallery ingestion using injected services.

    Pipeline: read tree -> extract chapters -> (compress) -> upload -> reconcile.

    Usage:
        async with HTTPObjectStorage(url, token) as client:
            async with IngestOrchestrator(client, config) as ingest:
                process = ingest.ingest([Path("wedding")], gallery_id="g-1")
                result = await process.wait()
    """

    def __init__(
        self,
        storage_client: IObjectStorage,
        config: Optional[IngestConfig] = None,
        compressor: Optional[ICompressor] = None,
        extractor: Optional[ChapterExtractor] = None,
        reconciler: Optional[ResultReconciler] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            storage_client: Object storage collaborator
            config: Ingest configuration
            compressor: Optional image compressor, used when config.compress is on
            extractor: Chapter extractor (built from config if omitted)
            reconciler: Result reconciler (default matcher cascade if omitted)
        """
        self._config = config or IngestConfig()
        self._storage = StorageService(storage_client, self._config)
        self._compressor = compressor
        self._reader = FolderTreeReader(
            fan_out=self._config.reader_fan_out,
            accept=mime_filter(self._config.accept),
        )
        self._extractor = extractor or ChapterExtractor(
            group_threshold=self._config.group_threshold,
            group_size=self._config.group_size,
            root_title=self._config.root_chapter_title,
        )
        self._uploader = UploadOrchestrator(self._storage, self._config)
        self._reconciler = reconciler or ResultReconciler()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        if self._compressor:
            await self._compressor.aclose()

    @property
    def config(self) -> IngestConfig:
        return self._config

    @property
    def storage(self) -> StorageService:
        return self._storage

    async def read_tree(self, entries: Sequence[Path]) -> FolderTree:
        """Read dropped entries into a flat file list plus folder membership."""
        return await self._reader.read(entries)

    def select_files(self, files: Sequence[FileHandle]) -> FolderTree:
        """Build a tree from an enumerated file list, applying the accept list."""
        accepted: List[FileHandle] = []
        skipped: List[Path] = []
        for file in files:
            if mime_accepted(file.mime_type, self._config.accept):
                accepted.append(file)
            else:
                skipped.append(file.path)
        if skipped:
            logger.info(f"Skipping {len(skipped)} files outside accept list '{self._config.accept}'")
        return FolderTree(files=accepted, folders=group_by_folder(accepted), skipped=skipped)

    def extract_chapters(self, tree: FolderTree, use_folders: bool = True) -> ChapterPlan:
        if not use_folders:
            return self._extractor.without_chapters(tree.files)
        return self._extractor.extract(tree.files, tree.folders)

    async def compress(
        self,
        files: Sequence[FileHandle],
        on_progress: Optional[PhaseProgressCallback] = None,
    ) -> List[FileHandle]:
        """
        Compress files with the configured compressor, keeping input order.

        Returns the input unchanged when compression is off.
        """
        if not (self._compressor and self._config.compress):
            return list(files)

        semaphore = asyncio.Semaphore(max(1, self._config.concurrency))
        done = 0

        async def run(file: FileHandle) -> FileHandle:
            nonlocal done
            async with semaphore:
                try:
                    result = await self._compressor.compress(file)
                except Exception as e:
                    logger.warning(f"Compression failed for {file.name}, uploading original: {e}")
                    result = file
            done += 1
            if on_progress:
                await on_progress(done, len(files))
            return result

        return list(await asyncio.gather(*(run(f) for f in files)))

    async def upload(self, gallery_id: str, files: Sequence[FileHandle], **kwargs) -> UploadBatchResult:
        """Upload files; see UploadOrchestrator.upload for keyword arguments."""
        return await self._uploader.upload(gallery_id, files, **kwargs)

    def reconcile(
        self,
        assignments: Sequence[PhotoAssignment],
        uploaded: Sequence[UploadedObject],
        sources: Optional[Sequence[FileHandle]] = None,
    ) -> ReconcileResult:
        return self._reconciler.reconcile(assignments, uploaded, sources)

    async def _discard_copies(self, originals: Sequence[FileHandle], uploaded: Sequence[FileHandle]) -> None:
        for original, copy in zip(originals, uploaded):
            if copy is not original:
                await self._compressor.discard(copy)

    def ingest(self, entries: Sequence[Path], gallery_id: str, use_folders: bool = True) -> IngestProcess:
        """
        Ingest dropped filesystem entries (files and directories).

        Returns an IngestProcess that can be started and monitored.

        Example:
            process = orchestrator.ingest([Path("wedding")], "g-1")
            process.on_summary(lambda s: print(f"{s.completed}/{s.total}"))
            result = await process.wait()  # wait() starts automatically if needed
        """
        return IngestProcess(self, gallery_id, entries=entries, use_folders=use_folders)

    def ingest_files(self, files: Sequence[FileHandle], gallery_id: str, use_folders: bool = True) -> IngestProcess:
        """Ingest an already-enumerated file list; folders come from relative paths."""
        return IngestProcess(self, gallery_id, files=files, use_folders=use_folders)

    async def _run_pipeline(self, process: IngestProcess) -> IngestResult:
        """Run every phase for one process. Fatal storage errors end in result.error."""
        result = IngestResult(gallery_id=process.gallery_id)

        # Reading
        await process.set_phase(ProcessPhase.READING, "Reading selected entries")
        if process.entries is not None:
            tree = await self.read_tree(process.entries)
        else:
            tree = self.select_files(process.files)
        result.tree = tree
        await process.complete_phase(
            ProcessPhase.READING,
            f"{len(tree.files)} files in {len(tree.folders)} folders, "
            f"{tree.read_error_count} unreadable, {len(tree.skipped)} skipped",
        )

        # Chapters
        await process.set_phase(ProcessPhase.CHAPTERS, "Extracting chapters")
        result.plan = self.extract_chapters(tree, process.use_folders)
        await process.complete_phase(ProcessPhase.CHAPTERS, f"{len(result.plan.chapters)} chapters")

        if not tree.files:
            logger.info("Nothing to upload")
            await process.set_phase(ProcessPhase.COMPLETED, "No files")
            return result

        # Compressing
        upload_files: List[FileHandle] = tree.files
        if self._compressor and self._config.compress:
            await process.set_phase(ProcessPhase.COMPRESSING, f"Compressing {len(tree.files)} files")

            async def on_compressed(current: int, total: int):
                await process.emit_phase_progress(ProcessPhase.COMPRESSING, "Compressing", current, total)

            upload_files = await self.compress(tree.files, on_compressed)
            await process.complete_phase(ProcessPhase.COMPRESSING)

        # Uploading
        await process.set_phase(ProcessPhase.UPLOADING, f"Uploading {len(upload_files)} files")
        try:
            await self._storage.check_available()
            result.upload = await self.upload(
                process.gallery_id,
                upload_files,
                on_progress=process.emit_progress,
                on_summary=process.emit_summary,
                is_cancelled=lambda: process.cancel_requested,
            )
        except BatchAbortedError as e:
            logger.error(f"Upload aborted: {e}")
            result.upload = e.partial_result
            result.error = str(e)
            await process.emit_error(e)
        except StorageUnavailableError as e:
            logger.error(f"Storage unavailable, nothing uploaded: {e}")
            result.error = str(e)
            await process.emit_error(e)
            return result
        finally:
            if upload_files is not tree.files:
                await self._discard_copies(tree.files, upload_files)
        await process.complete_phase(
            ProcessPhase.UPLOADING,
            f"{result.uploaded_count} uploaded, {result.failed_count} failed",
        )

        # Reconciling; runs on partial uploads too so nothing uploaded is lost
        await process.set_phase(ProcessPhase.RECONCILING, "Linking uploads to chapters")
        result.reconcile = self.reconcile(result.plan.assignments, result.upload.uploaded, sources=tree.files)
        await process.complete_phase(
            ProcessPhase.RECONCILING,
            f"{len(result.reconcile.photos)} photos, {result.reconcile.miss_count} unmatched",
        )

        await process.set_phase(ProcessPhase.COMPLETED, "Done")
        return result
