"""
Models for gallery_ingest.

Immutable dataclasses following Single Responsibility Principle.
"""
from dataclasses import dataclass, field, fields
from pathlib import Path, PurePosixPath
from fnmatch import fnmatchcase
from typing import Optional, Dict, Any, List, Tuple
import logging
import mimetypes
import os

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(name: str) -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or DEFAULT_MIME_TYPE


def mime_accepted(mime_type: str, accept: str) -> bool:
    """
    Check a MIME type against an accept list such as ``"image/*"``.

    The list is comma separated; an empty list or ``*/*`` accepts everything.
    """
    patterns = [p.strip().lower() for p in accept.split(",") if p.strip()]
    if not patterns:
        return True
    mime_type = mime_type.lower()
    return any(fnmatchcase(mime_type, pattern) for pattern in patterns)


@dataclass(frozen=True)
class FileHandle:
    """Reference to a local, not-yet-uploaded file."""
    path: Path
    name: str
    size_bytes: int
    mime_type: str = DEFAULT_MIME_TYPE
    relative_path: str = ""  # path inside the dropped tree, "" for top-level drops

    @classmethod
    def from_path(cls, path: Path, relative_path: str = "") -> "FileHandle":
        """
        Build a handle by stat-ing a local file.

        Raises:
            OSError: if the file cannot be stat-ed
        """
        path = Path(path)
        size = path.stat().st_size
        return cls(
            path=path,
            name=path.name,
            size_bytes=size,
            mime_type=guess_mime_type(path.name),
            relative_path=relative_path,
        )

    @property
    def folder_name(self) -> Optional[str]:
        """Top-level folder segment of relative_path, None for root files."""
        if not self.relative_path:
            return None
        parts = PurePosixPath(self.relative_path).parts
        if len(parts) > 1:
            return parts[0]
        return None

    @property
    def folder_path(self) -> str:
        """Every folder segment of relative_path joined with '/'."""
        parts = PurePosixPath(self.relative_path).parts if self.relative_path else ()
        return "/".join(parts[:-1])

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


@dataclass(frozen=True)
class Chapter:
    """Named, ordered section of a gallery."""
    id: str
    title: str
    description: str = ""
    position: int = 0


@dataclass(frozen=True)
class PhotoAssignment:
    """Chapter assignment of a single file, computed before upload."""
    file: FileHandle
    chapter_id: Optional[str]
    position_in_chapter: int

    @property
    def name(self) -> str:
        return self.file.name


@dataclass(frozen=True)
class UploadedObject:
    """Immutable result of a successful upload."""
    stored_name: str
    url: str
    size_bytes: int
    mime_type: str
    path: str = ""
    source_index: Optional[int] = None  # position in the uploaded file list


@dataclass(frozen=True)
class GalleryPhoto:
    """Uploaded object merged with its chapter metadata."""
    name: str
    url: str
    size_bytes: int
    content_type: str
    chapter_id: Optional[str] = None
    chapter_position: int = 0
    folder_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _env_value(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return default


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(value)


# Environment variable suffix -> (field name, cast)
_ENV_FIELDS: Tuple[Tuple[str, str, Any], ...] = (
    ("CONCURRENCY", "concurrency", int),
    ("ADAPTIVE_CONCURRENCY", "adaptive_concurrency", _parse_bool),
    ("MAX_CONCURRENCY", "max_concurrency", int),
    ("MIN_CONCURRENCY", "min_concurrency", int),
    ("MAX_ATTEMPTS", "max_attempts", int),
    ("RETRY_DELAY", "retry_delay", float),
    ("CHUNK_SIZE", "chunk_size", int),
    ("CHUNK_PAUSE", "chunk_pause", float),
    ("READER_FAN_OUT", "reader_fan_out", int),
    ("GROUP_THRESHOLD", "group_threshold", int),
    ("GROUP_SIZE", "group_size", int),
    ("ROOT_CHAPTER_TITLE", "root_chapter_title", str),
    ("COMPRESS", "compress", _parse_bool),
    ("MAX_SIZE_MB", "max_size_mb", float),
    ("MAX_WIDTH_OR_HEIGHT", "max_width_or_height", int),
    ("PATH_PREFIX", "path_prefix", str),
    ("ACCEPT", "accept", str),
    ("PROGRESS_INTERVAL", "progress_interval", float),
)


@dataclass(frozen=True)
class IngestConfig:
    """Immutable configuration for ingestion operations."""
    # Upload pool
    concurrency: int = 6
    adaptive_concurrency: bool = True
    max_concurrency: int = 8
    min_concurrency: int = 3
    # Retry
    max_attempts: int = 3
    retry_delay: float = 2.0  # seconds
    # Chunking
    chunk_size: int = 200
    chunk_pause: float = 0.5  # seconds
    # Folder reading
    reader_fan_out: int = 8
    # Chapters
    group_threshold: int = 30
    group_size: int = 25
    root_chapter_title: str = "Altre foto"
    # Compression
    compress: bool = False
    max_size_mb: float = 1.0
    max_width_or_height: int = 1920
    # Storage
    path_prefix: str = "galleries"
    # Selection: MIME patterns, "" accepts every file
    accept: str = "image/*"
    # Progress: min seconds between byte-count announcements
    progress_interval: float = 0.1

    @classmethod
    def from_env(cls, prefix: str = "GALLERY_INGEST_", **overrides) -> "IngestConfig":
        """Build config from GALLERY_INGEST_* environment variables."""
        defaults = cls()
        values: Dict[str, Any] = {}
        for suffix, field_name, cast in _ENV_FIELDS:
            values[field_name] = _env_value(f"{prefix}{suffix}", getattr(defaults, field_name), cast)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class FolderTree:
    """Result of reading a dropped/selected set of filesystem entries."""
    files: List[FileHandle] = field(default_factory=list)
    folders: Dict[str, List[FileHandle]] = field(default_factory=dict)
    read_errors: List[Any] = field(default_factory=list)  # List[ReadError]
    skipped: List[Path] = field(default_factory=list)  # filtered out by the accept list

    @property
    def read_error_count(self) -> int:
        return len(self.read_errors)

    @property
    def root_files(self) -> List[FileHandle]:
        return [f for f in self.files if f.folder_name is None]

    @property
    def has_folders(self) -> bool:
        return bool(self.folders)
