"""
Protocols (Interfaces) for Dependency Inversion.

Following Interface Segregation Principle - small, focused interfaces.
"""
from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol, runtime_checkable

from .models import FileHandle

# (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]


@runtime_checkable
class IObjectStorage(Protocol):
    """
    Interface for remote object storage.

    put_object reports progress through the callback and returns the public
    URL of the stored object. Any raised exception is a failed attempt;
    StorageUnavailableError means the storage cannot be reached at all.
    """

    async def put_object(
        self,
        path: str,
        file: FileHandle,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        """Upload file to path and return its URL."""
        ...


class ICompressor(ABC):
    """Interface for the optional image compression stage."""

    @abstractmethod
    async def compress(self, file: FileHandle) -> FileHandle:
        """Return a compressed copy of file, or file itself when not applicable."""
        pass

    async def discard(self, file: FileHandle) -> None:
        """Release a copy returned by compress once it has been uploaded."""

    async def aclose(self) -> None:
        """Release every resource held by the compressor."""
