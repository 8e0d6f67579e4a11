from __future__ import annotations

from collections.abc import Iterable

from markshelf.client.models import Bookmark, SortMode


def _matches(bookmark: Bookmark, needle: str) -> bool:
    return needle in bookmark.title.casefold() or needle in bookmark.url.casefold()


def view(
    items: Iterable[Bookmark],
    search_query: str = "",
    sort_mode: SortMode | str = SortMode.LATEST,
) -> list[Bookmark]:
    """Filter and order bookmarks for display.

    Pure: the input is never mutated and equal inputs give equal output.
    Alphabetical order compares case-folded titles first, then the raw
    title, then newest first.
    """
    mode = SortMode(sort_mode)
    needle = (search_query or "").strip().casefold()
    rows = [item for item in items if not needle or _matches(item, needle)]

    if mode is SortMode.OLDEST:
        return sorted(rows, key=lambda item: (item.created_at, item.id))
    if mode is SortMode.ALPHABETICAL:
        rows = sorted(rows, key=lambda item: item.created_at, reverse=True)
        return sorted(rows, key=lambda item: (item.title.casefold(), item.title))
    return sorted(rows, key=lambda item: (item.created_at, item.id), reverse=True)
