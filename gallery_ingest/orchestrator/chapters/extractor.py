"""
Chapter Extractor - derives gallery chapters from folder structure.

Rules, first match wins:
1. One chapter per folder, in first-observed folder order.
2. Root files go to a synthetic chapter placed last (only with rule 1).
3. No folders and more than ``group_threshold`` files: fixed-size groups
   "Group 1", "Group 2", ... This grouping is best-effort and carries no
   meaning; the plan is marked ChapterStrategy.GROUPS.
4. Otherwise no chapters, every file unassigned.
"""
from typing import Callable, Dict, List, Mapping, Optional, Sequence
import logging
import uuid

from ...models import Chapter, FileHandle, PhotoAssignment
from ..models import ChapterPlan, ChapterStrategy
from .editor import chapter_counts

logger = logging.getLogger(__name__)

DEFAULT_GROUP_THRESHOLD = 30
DEFAULT_GROUP_SIZE = 25
DEFAULT_ROOT_TITLE = "Altre foto"

# Well-known wedding folder names -> display titles
FOLDER_TITLE_SYNONYMS: Dict[str, str] = {
    "Sposo": "Preparazione Sposo",
    "Sposa": "Preparazione Sposa",
    "Preparativi_Sposo": "Preparazione Sposo",
    "Preparativi_Sposa": "Preparazione Sposa",
    "Cerimonia": "Cerimonia",
    "Chiesa": "Cerimonia in Chiesa",
    "Comune": "Cerimonia Civile",
    "Ricevimento": "Ricevimento",
    "Festa": "Festa e Ricevimento",
    "Villa": "Ricevimento in Villa",
    "Dettagli": "Dettagli e Particolari",
    "Torta": "Taglio della Torta",
    "Ballo": "Primo Ballo",
    "Esterni": "Foto Esterni",
    "Parco": "Foto nel Parco",
    "Giardino": "Foto nel Giardino",
    "Famiglia": "Foto con la Famiglia",
    "Invitati": "Foto con gli Invitati",
    "Amici": "Foto con gli Amici",
    "Gruppo": "Foto di Gruppo",
    "Fine": "Fine Evento",
}


def new_chapter_id() -> str:
    return f"chapter-{uuid.uuid4().hex[:12]}"


def folder_title(folder_name: str, synonyms: Mapping[str, str] = FOLDER_TITLE_SYNONYMS) -> str:
    """Display title for a folder: synonym if known, else underscores -> spaces."""
    spaced = folder_name.replace("_", " ")
    return synonyms.get(folder_name) or synonyms.get(spaced) or spaced


class _PositionCounter:
    """Running position per chapter; never reused."""

    def __init__(self):
        self._next: Dict[Optional[str], int] = {}

    def take(self, chapter_id: Optional[str]) -> int:
        position = self._next.get(chapter_id, 0)
        self._next[chapter_id] = position + 1
        return position


class ChapterExtractor:
    """Builds a ChapterPlan from a file list and its folder membership."""

    def __init__(
        self,
        group_threshold: int = DEFAULT_GROUP_THRESHOLD,
        group_size: int = DEFAULT_GROUP_SIZE,
        root_title: str = DEFAULT_ROOT_TITLE,
        synonyms: Optional[Mapping[str, str]] = None,
        id_factory: Callable[[], str] = new_chapter_id,
    ):
        if group_size < 1:
            raise ValueError("group_size must be at least 1")
        self._group_threshold = group_threshold
        self._group_size = group_size
        self._root_title = root_title
        self._synonyms = FOLDER_TITLE_SYNONYMS if synonyms is None else synonyms
        self._new_id = id_factory

    def extract(
        self,
        files: Sequence[FileHandle],
        folders: Mapping[str, Sequence[FileHandle]],
    ) -> ChapterPlan:
        """
        Extract chapters.

        Args:
            files: Every file of the selection, in enumeration order
            folders: Folder name -> member files (first-observed order)

        Returns:
            ChapterPlan where every input file has exactly one assignment
        """
        if folders:
            plan = self._from_folders(files, folders)
        elif len(files) > self._group_threshold:
            plan = self._from_groups(files)
        else:
            plan = self.without_chapters(files)

        logger.info(
            f"Extracted {len(plan.chapters)} chapters for {len(plan.assignments)} photos "
            f"(strategy: {plan.strategy.value})"
        )
        for title, count in chapter_counts(plan.chapters, plan.assignments).items():
            logger.debug(f"  {title}: {count} photos")
        return plan

    @staticmethod
    def without_chapters(files: Sequence[FileHandle]) -> ChapterPlan:
        """Plan with no chapters; every file keeps its enumeration position."""
        return ChapterPlan(
            chapters=[],
            assignments=[PhotoAssignment(f, None, i) for i, f in enumerate(files)],
            strategy=ChapterStrategy.NONE,
        )

    def _from_folders(
        self,
        files: Sequence[FileHandle],
        folders: Mapping[str, Sequence[FileHandle]],
    ) -> ChapterPlan:
        chapters: List[Chapter] = []
        assignments: List[PhotoAssignment] = []
        counter = _PositionCounter()
        assigned = set()

        for folder_name, members in folders.items():
            chapter = Chapter(
                id=self._new_id(),
                title=folder_title(folder_name, self._synonyms),
                description=f'Photos from folder "{folder_name}"',
                position=len(chapters),
            )
            chapters.append(chapter)
            for file in members:
                assignments.append(PhotoAssignment(file, chapter.id, counter.take(chapter.id)))
                assigned.add(file)

        # Anything not in a folder bucket: root files
        root_files = [f for f in files if f not in assigned]
        if root_files:
            root = Chapter(
                id=self._new_id(),
                title=self._root_title,
                description="Photos without a specific folder",
                position=len(chapters),
            )
            chapters.append(root)
            for file in root_files:
                assignments.append(PhotoAssignment(file, root.id, counter.take(root.id)))

        return ChapterPlan(chapters=chapters, assignments=assignments, strategy=ChapterStrategy.FOLDERS)

    def _from_groups(self, files: Sequence[FileHandle]) -> ChapterPlan:
        chapters: List[Chapter] = []
        assignments: List[PhotoAssignment] = []

        for start in range(0, len(files), self._group_size):
            group = files[start:start + self._group_size]
            chapter = Chapter(
                id=self._new_id(),
                title=f"Group {len(chapters) + 1}",
                description="Automatic grouping by upload order",
                position=len(chapters),
            )
            chapters.append(chapter)
            assignments.extend(
                PhotoAssignment(file, chapter.id, index) for index, file in enumerate(group)
            )

        logger.info(
            f"No folder structure: grouped {len(files)} files into {len(chapters)} "
            f"best-effort chapters of {self._group_size}"
        )
        return ChapterPlan(chapters=chapters, assignments=assignments, strategy=ChapterStrategy.GROUPS)
