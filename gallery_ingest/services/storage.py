"""
Storage Service - Single Responsibility: put files into object storage.

Wraps the object storage collaborator with path construction, name
sanitization and error classification.
"""
from typing import Callable, Optional
import logging
import random
import re
import time

from ..errors import StorageUnavailableError, UploadTransientError
from ..models import FileHandle, IngestConfig, UploadedObject
from ..protocols import IObjectStorage, ProgressCallback

logger = logging.getLogger(__name__)

# Characters unsafe in storage object paths
_UNSAFE_CHARS = re.compile(r"[#$\[\]*?\x00-\x1f\x7f]")


def sanitize_name(name: str) -> str:
    """Replace characters unsafe in storage paths with '_'."""
    return _UNSAFE_CHARS.sub("_", name)


def unique_token() -> str:
    """Collision-avoiding token: epoch milliseconds plus a random suffix."""
    return f"{int(time.time() * 1000)}-{random.randint(0, 999)}"


class StorageService:
    """
    Service for uploading gallery files to object storage.

    Objects are stored at ``{prefix}/{gallery_id}/{token}-{sanitized_name}``.
    """

    def __init__(
        self,
        client: IObjectStorage,
        config: Optional[IngestConfig] = None,
        token_factory: Callable[[], str] = unique_token,
    ):
        """
        Initialize storage service.

        Args:
            client: Object storage collaborator
            config: Ingest configuration
            token_factory: Produces the unique path token
        """
        self._client = client
        self._config = config or IngestConfig()
        self._new_token = token_factory

    def build_path(self, gallery_id: str, name: str) -> str:
        """Storage path for a file name inside a gallery."""
        prefix = self._config.path_prefix.strip("/")
        object_name = f"{self._new_token()}-{sanitize_name(name)}"
        if prefix:
            return f"{prefix}/{gallery_id}/{object_name}"
        return f"{gallery_id}/{object_name}"

    async def upload_file(
        self,
        gallery_id: str,
        file: FileHandle,
        attempt: int = 1,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UploadedObject:
        """
        Upload one file.

        Returns:
            UploadedObject whose stored_name is the sanitized file name

        Raises:
            UploadTransientError: the attempt failed and may be retried
            StorageUnavailableError: storage cannot be reached at all
        """
        path = self.build_path(gallery_id, file.name)
        logger.debug(f"Uploading {file.name} -> {path} (attempt {attempt})")

        try:
            url = await self._client.put_object(path, file, progress_callback)
        except StorageUnavailableError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            raise UploadTransientError(file.name, reason, attempt) from e

        if not url:
            raise UploadTransientError(file.name, "storage returned no URL", attempt)

        return UploadedObject(
            stored_name=sanitize_name(file.name),
            url=url,
            size_bytes=file.size_bytes,
            mime_type=file.mime_type,
            path=path,
        )

    async def check_available(self) -> None:
        """
        Probe the storage before a batch starts.

        Collaborators without a ``ping`` method are assumed reachable.

        Raises:
            StorageUnavailableError: if the reachability check fails
        """
        ping = getattr(self._client, "ping", None)
        if not callable(ping):
            return
        try:
            await ping()
        except StorageUnavailableError:
            raise
        except Exception as e:
            raise StorageUnavailableError(f"Object storage unreachable: {e}") from e
