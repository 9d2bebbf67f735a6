"""
Folder tree reading for drag-and-drop / file-picker selections.

Turns a heterogeneous list of dropped entries (files and directories,
arbitrarily nested) into a flat file list plus a map from top-level folder
name to its member files.
"""
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import asyncio
import logging
import os

from ..errors import ReadError
from ..models import FileHandle, FolderTree, guess_mime_type, mime_accepted

logger = logging.getLogger(__name__)

DEFAULT_FAN_OUT = 8

# Listing entry kinds
DIRECTORY = "dir"
FILE = "file"
SKIP = "skip"


def group_by_folder(files: Iterable[FileHandle]) -> Dict[str, List[FileHandle]]:
    """
    Build folder membership from relative paths.

    Folders appear in first-observed order, files keep their input order.
    Root files (no folder segment) are left out.
    """
    folders: Dict[str, List[FileHandle]] = {}
    for file in files:
        folder = file.folder_name
        if folder is None:
            continue
        folders.setdefault(folder, []).append(file)
    return folders


def mime_filter(accept: str) -> Optional[Callable[[Path], bool]]:
    """Path filter for an accept list, None when it accepts everything."""
    patterns = {p.strip() for p in accept.split(",") if p.strip()}
    if not patterns or "*/*" in patterns:
        return None
    return lambda path: mime_accepted(guess_mime_type(path.name), accept)


def _entry_kind(entry: os.DirEntry) -> str:
    if entry.is_dir(follow_symlinks=False):
        return DIRECTORY
    if entry.is_symlink():
        # Linked directories are not followed; dangling links surface as read errors
        return SKIP if entry.is_dir() else FILE
    if entry.is_file(follow_symlinks=False):
        return FILE
    return SKIP


def _list_directory(path: Path) -> List[Tuple[str, str]]:
    """List (name, kind) pairs, draining the whole listing, in name order."""
    with os.scandir(path) as it:
        entries = [(entry.name, _entry_kind(entry)) for entry in it]
    return sorted(entries)


class FolderTreeReader:
    """
    Reads dropped entries into a FolderTree.

    Directory listings run in worker threads, at most ``fan_out`` at a
    time. Results are assembled in listing order, so the file order inside
    each folder is deterministic regardless of which listing finishes first.
    """

    def __init__(
        self,
        fan_out: int = DEFAULT_FAN_OUT,
        accept: Optional[Callable[[Path], bool]] = None,
    ):
        """
        Args:
            fan_out: Max concurrent directory listings
            accept: Optional filter; files for which it returns False are skipped
        """
        self._fan_out = max(1, fan_out)
        self._accept = accept

    async def read(self, entries: Iterable[Path]) -> FolderTree:
        """
        Read dropped entries.

        Args:
            entries: Dropped files and directories

        Returns:
            FolderTree with files, folder map and read errors
        """
        semaphore = asyncio.Semaphore(self._fan_out)
        errors: List[ReadError] = []
        skipped: List[Path] = []

        jobs = []
        for entry in entries:
            entry = Path(entry)
            if entry.is_dir():
                jobs.append(self._read_directory(entry, entry.name, semaphore, errors, skipped))
            else:
                jobs.append(self._read_file(entry, "", errors, skipped))

        results = await asyncio.gather(*jobs)

        files: List[FileHandle] = []
        for chunk in results:
            files.extend(chunk)

        tree = FolderTree(files=files, folders=group_by_folder(files), read_errors=errors, skipped=skipped)
        logger.info(
            f"Read {len(files)} files, {len(tree.folders)} folders "
            f"({len(errors)} read errors, {len(skipped)} skipped)"
        )
        if tree.folders:
            logger.debug(f"Folders detected: {', '.join(tree.folders)}")
        return tree

    async def _read_file(
        self,
        path: Path,
        relative_path: str,
        errors: List[ReadError],
        skipped: List[Path],
    ) -> List[FileHandle]:
        if self._accept and not self._accept(path):
            logger.debug(f"Skipping not accepted file {path}")
            skipped.append(path)
            return []
        try:
            return [FileHandle.from_path(path, relative_path)]
        except OSError as e:
            logger.warning(f"Skipping unreadable file {path}: {e}")
            errors.append(ReadError(path, str(e)))
            return []

    async def _read_directory(
        self,
        directory: Path,
        relative: str,
        semaphore: asyncio.Semaphore,
        errors: List[ReadError],
        skipped: List[Path],
    ) -> List[FileHandle]:
        """Read a directory recursively, returning files in listing order."""
        # Only the listing holds the semaphore, recursion must not
        async with semaphore:
            try:
                listing = await asyncio.to_thread(_list_directory, directory)
            except OSError as e:
                logger.warning(f"Cannot list directory {directory}: {e}")
                errors.append(ReadError(directory, str(e)))
                return []

        jobs = []
        for name, kind in listing:
            child = directory / name
            child_relative = f"{relative}/{name}"
            if kind == DIRECTORY:
                jobs.append(self._read_directory(child, child_relative, semaphore, errors, skipped))
            elif kind == FILE:
                jobs.append(self._read_file(child, child_relative, errors, skipped))
            else:
                logger.info(f"Skipping linked directory or special file {child}")
                skipped.append(child)

        results = await asyncio.gather(*jobs)
        files: List[FileHandle] = []
        for chunk in results:
            files.extend(chunk)
        return files
