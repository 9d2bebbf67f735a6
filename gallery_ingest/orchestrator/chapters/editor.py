"""
Chapter editing operations.

Pure functions over (chapters, assignments). Chapter positions are always
renumbered to 0..N-1; photo positions inside a chapter are never renumbered.
"""
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import uuid

from ...models import Chapter, FileHandle, PhotoAssignment

UNASSIGNED_LABEL = "(unassigned)"


def renumber(chapters: Iterable[Chapter]) -> List[Chapter]:
    """Return chapters with contiguous positions in their current order."""
    return [
        chapter if chapter.position == index else replace(chapter, position=index)
        for index, chapter in enumerate(chapters)
    ]


def sort_chapters(chapters: Iterable[Chapter]) -> List[Chapter]:
    return sorted(chapters, key=lambda c: c.position)


def add_chapter(
    chapters: Sequence[Chapter],
    title: Optional[str] = None,
    description: str = "",
    chapter_id: Optional[str] = None,
) -> List[Chapter]:
    """Append a new chapter at the end."""
    ordered = sort_chapters(chapters)
    new_chapter = Chapter(
        id=chapter_id or f"chapter-{uuid.uuid4().hex[:12]}",
        title=title or f"Chapter {len(ordered) + 1}",
        description=description,
        position=len(ordered),
    )
    return renumber(ordered + [new_chapter])


def rename_chapter(
    chapters: Sequence[Chapter],
    chapter_id: str,
    title: str,
    description: Optional[str] = None,
) -> List[Chapter]:
    """Change a chapter's title (and optionally description)."""
    _require(chapters, chapter_id)
    updated = []
    for chapter in chapters:
        if chapter.id == chapter_id:
            chapter = replace(
                chapter,
                title=title.strip() or f"Chapter {chapter.position + 1}",
                description=chapter.description if description is None else description,
            )
        updated.append(chapter)
    return updated


def move_chapter(chapters: Sequence[Chapter], chapter_id: str, direction: str) -> List[Chapter]:
    """
    Swap a chapter with its neighbour.

    Args:
        direction: "up" (towards position 0) or "down"

    Moving past either end is a no-op.
    """
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    ordered = sort_chapters(chapters)
    index = _index_of(ordered, chapter_id)
    target = index - 1 if direction == "up" else index + 1
    if 0 <= target < len(ordered):
        ordered[index], ordered[target] = ordered[target], ordered[index]
    return renumber(ordered)


def remove_chapter(
    chapters: Sequence[Chapter],
    assignments: Sequence[PhotoAssignment],
    chapter_id: str,
) -> Tuple[List[Chapter], List[PhotoAssignment]]:
    """
    Remove a chapter.

    Remaining chapters are renumbered and every photo that referenced the
    removed chapter becomes chapter-less (chapter_id None).
    """
    _require(chapters, chapter_id)
    remaining = renumber(c for c in sort_chapters(chapters) if c.id != chapter_id)
    updated = [
        replace(a, chapter_id=None) if a.chapter_id == chapter_id else a
        for a in assignments
    ]
    return remaining, updated


def assign_to_chapter(
    assignments: Sequence[PhotoAssignment],
    files: Iterable[FileHandle],
    chapter_id: Optional[str],
) -> List[PhotoAssignment]:
    """
    Move files into a chapter (or out of all chapters with None).

    New positions continue after the chapter's current maximum so existing
    positions are never reused.
    """
    targets = set(files)
    next_position = 1 + max(
        (a.position_in_chapter for a in assignments if a.chapter_id == chapter_id and a.file not in targets),
        default=-1,
    )
    updated = []
    for assignment in assignments:
        if assignment.file in targets and assignment.chapter_id != chapter_id:
            assignment = replace(assignment, chapter_id=chapter_id, position_in_chapter=next_position)
            next_position += 1
        updated.append(assignment)
    return updated


def combine_chapters(existing: Sequence[Chapter], new: Sequence[Chapter]) -> List[Chapter]:
    """Append new chapters whose title is not already present."""
    combined = sort_chapters(existing)
    titles = {c.title for c in combined}
    for chapter in sort_chapters(new):
        if chapter.title not in titles:
            combined.append(chapter)
            titles.add(chapter.title)
    return renumber(combined)


def chapter_counts(chapters: Sequence[Chapter], assignments: Sequence[PhotoAssignment]) -> Dict[str, int]:
    """Photo count per chapter title, plus unassigned photos if any."""
    by_id: Dict[Optional[str], int] = {}
    for assignment in assignments:
        by_id[assignment.chapter_id] = by_id.get(assignment.chapter_id, 0) + 1

    counts = {c.title: by_id.get(c.id, 0) for c in sort_chapters(chapters)}
    known = {c.id for c in chapters}
    orphaned = sum(n for cid, n in by_id.items() if cid is None or cid not in known)
    if orphaned:
        counts[UNASSIGNED_LABEL] = orphaned
    return counts


def _index_of(chapters: Sequence[Chapter], chapter_id: str) -> int:
    for index, chapter in enumerate(chapters):
        if chapter.id == chapter_id:
            return index
    raise KeyError(f"Unknown chapter: {chapter_id}")


def _require(chapters: Sequence[Chapter], chapter_id: str) -> None:
    _index_of(chapters, chapter_id)
