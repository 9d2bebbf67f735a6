"""
Result Reconciler - links uploaded objects back to chapter assignments.

Objects that carry their position in the uploaded file list are linked to
the assignment of that exact source file. Anything else is matched by file
name through an ordered list of matchers. Each matcher is a pure predicate
``(stored_name, original_name) -> bool``; the first stage with an unused
match wins. Unmatched objects are kept with no chapter and recorded as misses.
"""
from functools import lru_cache
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple
import logging
import re

from ..errors import ReconciliationMiss
from ..models import FileHandle, GalleryPhoto, PhotoAssignment, UploadedObject
from ..services.storage import sanitize_name
from .models import ReconcileResult

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def basename(name: str) -> str:
    """File name component, dropping any path-like prefix."""
    return name.replace("\\", "/").rsplit("/", 1)[-1]


@lru_cache(maxsize=65536)
def normalize(name: str) -> str:
    """Lower-cased, whitespace-free, storage-sanitized file name component."""
    return _WHITESPACE.sub("", sanitize_name(basename(name))).lower()


def match_exact(stored_name: str, original_name: str) -> bool:
    return stored_name == original_name


def match_basename(stored_name: str, original_name: str) -> bool:
    return basename(stored_name) == basename(original_name)


def match_normalized(stored_name: str, original_name: str) -> bool:
    return normalize(stored_name) == normalize(original_name)


def match_suffix(stored_name: str, original_name: str) -> bool:
    """Either normalized name ends with the other (tolerates added prefixes)."""
    stored, original = normalize(stored_name), normalize(original_name)
    if not stored or not original:
        return False
    return original.endswith(stored) or stored.endswith(original)


class MatchStage(NamedTuple):
    """
    One step of the cascade.

    When ``key`` is set, ``matches(a, b)`` must equal ``key(a) == key(b)``;
    the stage is then answered from a lookup table instead of a scan.
    """
    name: str
    matches: Callable[[str, str], bool]
    key: Optional[Callable[[str], str]] = None


DEFAULT_STAGES: Sequence[MatchStage] = (
    MatchStage("exact", match_exact, str),
    MatchStage("basename", match_basename, basename),
    MatchStage("normalized", match_normalized, normalize),
    MatchStage("suffix", match_suffix),
)

SOURCE = "source"
MISS = "miss"


class _Candidates:
    """Lookup tables over one batch of assignments."""

    def __init__(self, stages: Sequence[MatchStage], assignments: Sequence[PhotoAssignment]):
        self.assignments = assignments
        self.tables: List[Optional[Dict[str, List[int]]]] = []
        for stage in stages:
            if stage.key is None:
                self.tables.append(None)
                continue
            table: Dict[str, List[int]] = {}
            for i, assignment in enumerate(assignments):
                table.setdefault(stage.key(assignment.name), []).append(i)
            self.tables.append(table)

        self.by_file: Dict[FileHandle, List[int]] = {}
        for i, assignment in enumerate(assignments):
            self.by_file.setdefault(assignment.file, []).append(i)

    def hits(self, position: int, stage: MatchStage, stored_name: str) -> List[int]:
        table = self.tables[position]
        if table is not None:
            return table.get(stage.key(stored_name), [])
        return [i for i, a in enumerate(self.assignments) if stage.matches(stored_name, a.name)]


class ResultReconciler:
    """Merges chapter metadata onto uploaded objects."""

    def __init__(self, stages: Sequence[MatchStage] = DEFAULT_STAGES):
        self._stages = tuple(stages)

    @property
    def stages(self) -> Sequence[MatchStage]:
        return self._stages

    def find(
        self,
        stored_name: str,
        assignments: Sequence[PhotoAssignment],
        consumed: Optional[Set[int]] = None,
    ) -> Optional[Tuple[str, int]]:
        """
        Run the name cascade for one stored name.

        Returns:
            (stage name, assignment index) or None
        """
        return self._find(stored_name, _Candidates(self._stages, assignments), consumed or set())

    def _find(self, stored_name: str, candidates: _Candidates, consumed: Set[int]) -> Optional[Tuple[str, int]]:
        for position, stage in enumerate(self._stages):
            fresh = [i for i in candidates.hits(position, stage, stored_name) if i not in consumed]
            if not fresh:
                continue
            if stage.matches is match_suffix:
                # Longest original name is the most specific candidate
                names = candidates.assignments
                return stage.name, max(fresh, key=lambda i: (len(names[i].name), -i))
            return stage.name, fresh[0]
        return None

    def reconcile(
        self,
        assignments: Sequence[PhotoAssignment],
        uploaded: Sequence[UploadedObject],
        sources: Optional[Sequence[FileHandle]] = None,
    ) -> ReconcileResult:
        """
        Merge each uploaded object with its chapter assignment.

        Args:
            assignments: Chapter assignments computed before upload
            uploaded: Objects returned by the upload
            sources: The original files, in the order they were uploaded;
                objects with a ``source_index`` are linked through it

        Never raises on a miss; misses are counted and logged. An assignment
        is linked at most once.
        """
        result = ReconcileResult(matched_by={SOURCE: 0})
        result.matched_by.update({stage.name: 0 for stage in self._stages})
        result.matched_by[MISS] = 0
        candidates = _Candidates(self._stages, assignments)
        consumed: Set[int] = set()

        for obj in uploaded:
            linked = self._source_hits(obj, sources, candidates)
            if linked:
                # Known source file: never fall back to another file's name
                fresh = [i for i in linked if i not in consumed]
                found = (SOURCE, fresh[0]) if fresh else None
            else:
                found = self._find(obj.stored_name, candidates, consumed)
            if found is None:
                logger.warning(f"No chapter match for uploaded object {obj.stored_name}")
                result.misses.append(ReconciliationMiss(obj.stored_name, obj.url))
                result.matched_by[MISS] += 1
                result.photos.append(self._merge(obj, None))
                continue

            stage_name, index = found
            consumed.add(index)
            result.matched_by[stage_name] += 1
            result.photos.append(self._merge(obj, assignments[index]))

        if result.misses:
            logger.warning(
                f"Reconciled {len(result.photos)} objects with {len(result.misses)} "
                f"chapter miss(es)"
            )
        else:
            logger.info(f"Reconciled {len(result.photos)} objects, all matched")
        logger.debug(f"Matches by stage: {result.matched_by}")
        return result

    @staticmethod
    def _source_hits(
        obj: UploadedObject,
        sources: Optional[Sequence[FileHandle]],
        candidates: _Candidates,
    ) -> List[int]:
        """Assignments of the exact file an object was uploaded from."""
        if sources is None or obj.source_index is None:
            return []
        if not 0 <= obj.source_index < len(sources):
            logger.debug(f"Source index {obj.source_index} out of range for {obj.stored_name}")
            return []
        return candidates.by_file.get(sources[obj.source_index], [])

    @staticmethod
    def _merge(obj: UploadedObject, assignment: Optional[PhotoAssignment]) -> GalleryPhoto:
        if assignment is None:
            return GalleryPhoto(
                name=obj.stored_name,
                url=obj.url,
                size_bytes=obj.size_bytes,
                content_type=obj.mime_type,
            )
        return GalleryPhoto(
            name=obj.stored_name,
            url=obj.url,
            size_bytes=obj.size_bytes,
            content_type=obj.mime_type,
            chapter_id=assignment.chapter_id,
            chapter_position=assignment.position_in_chapter,
            folder_path=assignment.file.folder_path,
        )


def summarize_stages(matched_by: Dict[str, int]) -> List[str]:
    """Human-readable 'stage: count' lines, skipping empty stages."""
    return [f"{name}: {count}" for name, count in matched_by.items() if count]
