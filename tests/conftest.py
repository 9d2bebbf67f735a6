"""Shared fakes for gallery_ingest tests."""
import asyncio
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from gallery_ingest.errors import StorageUnavailableError
from gallery_ingest.models import FileHandle, IngestConfig

ALWAYS = -1


def handle(name: str, relative_path: str = "", size: int = 1000, mime: str = "image/jpeg") -> FileHandle:
    """FileHandle that never touches the filesystem."""
    return FileHandle(
        path=Path("/photos") / (relative_path or name),
        name=name,
        size_bytes=size,
        mime_type=mime,
        relative_path=relative_path,
    )


def fast_config(**overrides) -> IngestConfig:
    """Config without sleeps between retries or chunks."""
    values = {"retry_delay": 0, "chunk_pause": 0}
    values.update(overrides)
    return IngestConfig(**values)


class FakeObjectStorage:
    """
    In-memory object storage.

    Args:
        fail_times: file name -> number of failing attempts before success (ALWAYS = never succeeds)
        delay: seconds each put_object takes
        unavailable_after: successful puts before every call raises StorageUnavailableError
    """

    def __init__(
        self,
        fail_times: Optional[Dict[str, int]] = None,
        delay: float = 0.0,
        unavailable_after: Optional[int] = None,
        ping_error: Optional[Exception] = None,
    ):
        self.fail_times = dict(fail_times or {})
        self.delay = delay
        self.unavailable_after = unavailable_after
        self.ping_error = ping_error
        self.paths: List[str] = []
        self.attempts: Dict[str, int] = defaultdict(int)
        self.successes = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.pings = 0

    async def ping(self) -> None:
        self.pings += 1
        if self.ping_error:
            raise self.ping_error

    async def put_object(self, path, file, progress_callback=None) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.attempts[file.name] += 1
            self.paths.append(path)
            await asyncio.sleep(self.delay)

            if self.unavailable_after is not None and self.successes >= self.unavailable_after:
                raise StorageUnavailableError("storage unreachable")

            remaining = self.fail_times.get(file.name, 0)
            if remaining == ALWAYS:
                raise ConnectionError(f"upload of {file.name} rejected")
            if remaining > 0:
                self.fail_times[file.name] = remaining - 1
                raise ConnectionError(f"upload of {file.name} timed out")

            if progress_callback:
                progress_callback(file.size_bytes // 2, file.size_bytes)
                progress_callback(file.size_bytes, file.size_bytes)
            self.successes += 1
            return f"https://cdn.test/{path}"
        finally:
            self.in_flight -= 1


@pytest.fixture
def storage():
    return FakeObjectStorage()
