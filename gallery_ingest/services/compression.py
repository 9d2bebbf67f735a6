"""
Compression Service - Single Responsibility: shrink images before upload.

Uses Pillow. Any failure falls back to the original file; compression
never aborts an ingestion.
"""
from pathlib import Path
from typing import Optional
import asyncio
import logging
import shutil
import tempfile

from PIL import Image

from ..models import FileHandle, IngestConfig
from ..protocols import ICompressor

logger = logging.getLogger(__name__)

MB = 1024 * 1024
# JPEG qualities tried in order until the output fits max_size_mb
QUALITY_STEPS = (90, 80, 70, 60, 50)


class CompressionService(ICompressor):
    """
    Image compression collaborator.

    Skips non-images and images already under ``max_size_mb``; otherwise
    resizes to ``max_width_or_height`` and re-encodes, keeping EXIF.

    Compressed copies go to ``output_dir`` when given (kept), otherwise to a
    temporary directory owned by the service and removed by ``aclose()``.

    Usage:
        async with CompressionService(config) as compressor:
            smaller = await compressor.compress(file)
            ...
            await compressor.discard(smaller)
    """

    def __init__(self, config: Optional[IngestConfig] = None, output_dir: Optional[Path] = None):
        self._config = config or IngestConfig()
        self._output_dir = Path(output_dir) if output_dir else None
        self._temp_dir: Optional[tempfile.TemporaryDirectory] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    @property
    def work_dir(self) -> Optional[Path]:
        """Directory compressed copies are currently written to."""
        if self._output_dir is not None:
            return self._output_dir
        return Path(self._temp_dir.name) if self._temp_dir else None

    def _ensure_output_dir(self) -> Path:
        if self._output_dir is not None:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            return self._output_dir
        if self._temp_dir is None:
            self._temp_dir = tempfile.TemporaryDirectory(prefix="gallery-ingest-")
            logger.debug(f"Compression temp dir: {self._temp_dir.name}")
        return Path(self._temp_dir.name)

    async def discard(self, file: FileHandle) -> None:
        """Remove a compressed copy made by this service. Other files are left alone."""
        if self._temp_dir is None:
            return
        root = Path(self._temp_dir.name)
        if file.path.parent.parent != root:
            return
        await asyncio.to_thread(shutil.rmtree, file.path.parent, True)

    async def aclose(self) -> None:
        """Remove the temporary directory and every copy still in it."""
        if self._temp_dir is None:
            return
        temp_dir, self._temp_dir = self._temp_dir, None
        logger.debug(f"Removing compression temp dir {temp_dir.name}")
        await asyncio.to_thread(temp_dir.cleanup)

    async def compress(self, file: FileHandle) -> FileHandle:
        if not file.is_image:
            logger.debug(f"Not an image, skipping compression: {file.name}")
            return file

        max_bytes = int(self._config.max_size_mb * MB)
        if file.size_bytes <= max_bytes:
            logger.debug(f"Already small enough, skipping compression: {file.name}")
            return file

        try:
            out_dir = self._ensure_output_dir()
            compressed = await asyncio.to_thread(self._compress_sync, file, max_bytes, out_dir)
        except Exception as e:
            logger.warning(f"Compression failed for {file.name}, uploading original: {e}")
            return file

        if compressed is file:
            logger.debug(f"Compression did not shrink {file.name}, keeping original")
            return file

        ratio = file.size_bytes / max(compressed.size_bytes, 1)
        logger.info(
            f"Compressed {file.name}: {file.size_bytes / MB:.2f} MB -> "
            f"{compressed.size_bytes / MB:.2f} MB ({ratio:.2f}x)"
        )
        return compressed

    def _compress_sync(self, file: FileHandle, max_bytes: int, out_dir: Path) -> FileHandle:
        # Distinct subdirectory per source so equal names from different folders don't collide
        target_dir = Path(tempfile.mkdtemp(dir=out_dir))
        target = target_dir / file.name
        try:
            return self._encode(file, max_bytes, target)
        except Exception:
            shutil.rmtree(target_dir, ignore_errors=True)
            raise

    def _encode(self, file: FileHandle, max_bytes: int, target: Path) -> FileHandle:
        with Image.open(file.path) as img:
            exif = img.info.get("exif")
            fmt = (img.format or "JPEG").upper()
            limit = self._config.max_width_or_height
            img.thumbnail((limit, limit), Image.Resampling.LANCZOS)

            if fmt in ("JPEG", "WEBP"):
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                for quality in QUALITY_STEPS:
                    save_kwargs = {"format": fmt, "quality": quality, "optimize": True}
                    if exif:
                        save_kwargs["exif"] = exif
                    img.save(target, **save_kwargs)
                    if target.stat().st_size <= max_bytes:
                        break
            else:
                img.save(target, format=fmt, optimize=True)

        size = target.stat().st_size
        if size >= file.size_bytes:
            # Re-encoding made it bigger; keep the original
            shutil.rmtree(target.parent, ignore_errors=True)
            return file

        return FileHandle(
            path=target,
            name=file.name,
            size_bytes=size,
            mime_type=file.mime_type,
            relative_path=file.relative_path,
        )
