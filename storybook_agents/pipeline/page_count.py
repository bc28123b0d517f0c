from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

MIN_PAGES = 4
MAX_PAGES = 20

# (exclusive word-count ceiling, pages)
_WORD_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (150, 4),
    (300, 5),
    (500, 6),
    (700, 8),
    (1000, 10),
    (1500, 12),
    (2000, 14),
)
_WORDS_PER_PAGE_FLOOR = 15
_WORDS_PER_PAGE_CEILING = 100


def count_words(story: str) -> int:
    return len(story.split())


def count_paragraphs(story: str) -> int:
    stripped = story.strip()
    if not stripped:
        return 0
    return len(re.split(r"\n\s*\n+", stripped))


def estimate_page_count(story: str, *, min_pages: int = MIN_PAGES, max_pages: int = MAX_PAGES) -> int:
    words = count_words(story)
    for ceiling, pages in _WORD_THRESHOLDS:
        if words < ceiling:
            recommended = pages
            break
    else:
        recommended = min(max_pages, math.ceil(words / 150))

    # Many short paragraphs give natural page breaks.
    if count_paragraphs(story) > recommended * 1.5:
        recommended = min(max_pages, recommended + 2)

    return max(min_pages, min(max_pages, recommended))


@dataclass(frozen=True)
class PageCountCheck:
    page_count: int
    is_valid: bool
    words_per_page: int
    recommended: int
    warnings: list[str] = field(default_factory=list)


def check_page_count(
    story: str,
    page_count: int,
    *,
    min_pages: int = MIN_PAGES,
    max_pages: int = MAX_PAGES,
) -> PageCountCheck:
    warnings: list[str] = []
    is_valid = True
    if page_count < min_pages:
        is_valid = False
        warnings.append(f"Page count ({page_count}) is below minimum ({min_pages})")
    if page_count > max_pages:
        is_valid = False
        warnings.append(f"Page count ({page_count}) exceeds maximum ({max_pages})")

    words_per_page = count_words(story) / page_count if page_count > 0 else 0.0
    if is_valid and words_per_page < _WORDS_PER_PAGE_FLOOR:
        warnings.append("Too few words per page - pages may feel empty")
    if is_valid and words_per_page > _WORDS_PER_PAGE_CEILING:
        warnings.append("Too many words per page - may overwhelm young readers")

    return PageCountCheck(
        page_count=page_count,
        is_valid=is_valid,
        words_per_page=round(words_per_page),
        recommended=estimate_page_count(story, min_pages=min_pages, max_pages=max_pages),
        warnings=warnings,
    )
