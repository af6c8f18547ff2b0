"""Pagination, tag filtering and search over a snapshot of posts."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

from .parser import Post

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


@dataclass(frozen=True)
class Page:
    posts: tuple[Post, ...]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


def paginate(
    posts: Sequence[Post],
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> Page:
    """
    Slice one page out of ``posts``.

    ``page`` below 1 becomes 1, ``limit`` below 1 becomes ``default_limit``
    and ``limit`` is capped at ``max_limit``.
    """
    page = max(1, page)
    limit = default_limit if limit < 1 else min(limit, max_limit)
    total = len(posts)
    offset = (page - 1) * limit
    items = tuple(posts[offset : offset + limit])
    return Page(
        posts=items,
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
        has_next=offset + len(items) < total,
        has_prev=page > 1,
    )


def filter_by_tag(posts: Sequence[Post], tag: str) -> list[Post]:
    """Posts carrying ``tag`` (case-insensitive exact match), order kept."""
    wanted = tag.casefold()
    return [post for post in posts if any(t.casefold() == wanted for t in post.tags)]


def search(posts: Sequence[Post], query: str) -> list[Post]:
    """
    Case-insensitive substring search.

    Tested fields: title, rendered content, excerpt, author and every tag. A hit
    on any field includes the post. Results keep the snapshot order (newest
    first), there is no ranking.
    """
    term = query.strip().casefold()
    if not term:
        return []

    def matches(post: Post) -> bool:
        fields = (post.title, post.content, post.excerpt, post.author, *post.tags)
        return any(term in value.casefold() for value in fields)

    return [post for post in posts if matches(post)]


def tag_counts(posts: Sequence[Post]) -> list[tuple[str, int]]:
    """Lowercased tags with post counts, most used first (ties: first seen)."""
    counts: dict[str, int] = {}
    for post in posts:
        for tag in post.tags:
            key = tag.lower()
            counts[key] = counts.get(key, 0) + 1
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)
