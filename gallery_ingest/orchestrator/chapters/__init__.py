from .extractor import ChapterExtractor, FOLDER_TITLE_SYNONYMS, folder_title
from .editor import (
    add_chapter,
    assign_to_chapter,
    chapter_counts,
    combine_chapters,
    move_chapter,
    remove_chapter,
    rename_chapter,
    renumber,
)

__all__ = [
    "ChapterExtractor",
    "FOLDER_TITLE_SYNONYMS",
    "folder_title",
    "add_chapter",
    "assign_to_chapter",
    "chapter_counts",
    "combine_chapters",
    "move_chapter",
    "remove_chapter",
    "rename_chapter",
    "renumber",
]
