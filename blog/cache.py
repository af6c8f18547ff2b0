"""
Post Cache Module.

Holds the current immutable snapshot of parsed posts and rebuilds it lazily
after invalidation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from .parser import EXCERPT_LENGTH, WORDS_PER_MINUTE, Post, parse_post
from .scanner import ensure_content_root, scan_sources

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """A complete, sorted collection of posts. Replaced, never mutated."""

    posts: tuple[Post, ...]
    generation: int
    built_at: float
    by_id: Mapping[str, Post] = field(repr=False)


@dataclass
class PostCache:
    """Snapshot holder: ``get()`` rebuilds when empty, ``invalidate()`` empties.

    ``invalidate()`` may be called from the watchdog thread. Rebuilds are
    serialized by the caller (``ContentRuntime.read_snapshot``).
    """

    root: Path
    excerpt_length: int = EXCERPT_LENGTH
    words_per_minute: int = WORDS_PER_MINUTE
    _snapshot: Snapshot | None = field(default=None, init=False, repr=False)
    _generation: int = field(default=0, init=False, repr=False)
    _epoch: int = field(default=0, init=False, repr=False)

    def get(self) -> Snapshot:
        """Return the current snapshot, rebuilding it if none is held."""
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        return self._rebuild()

    def posts(self) -> tuple[Post, ...]:
        return self.get().posts

    def get_post(self, post_id: str) -> Post | None:
        return self.get().by_id.get(post_id)

    def invalidate(self, reason: str = "") -> None:
        """Discard the snapshot; the next read rebuilds."""
        self._epoch += 1
        had_snapshot = self._snapshot is not None
        self._snapshot = None
        if had_snapshot:
            logger.info("Post cache invalidated%s", f": {reason}" if reason else "")

    def stats(self) -> dict[str, object]:
        snapshot = self._snapshot
        return {
            "cached": snapshot is not None,
            "generation": snapshot.generation if snapshot else self._generation,
            "posts": len(snapshot.posts) if snapshot else None,
            "builtAt": snapshot.built_at if snapshot else None,
        }

    def _rebuild(self) -> Snapshot:
        started = time.monotonic()
        epoch = self._epoch

        ensure_content_root(self.root)
        collected: dict[str, Post] = {}
        for source in scan_sources(self.root):
            post = parse_post(
                source.markdown_path,
                source.identifier,
                excerpt_length=self.excerpt_length,
                words_per_minute=self.words_per_minute,
            )
            if post is None:
                continue
            existing = collected.get(post.id)
            if existing is not None:
                # Folder posts win id collisions with standalone files
                winner = post if post.is_directory_post else existing
                logger.warning(
                    "Duplicate post id %r: %s and %s, keeping %s",
                    post.id,
                    existing.source_path,
                    post.source_path,
                    winner.source_path,
                )
                post = winner
            # reassigning an existing key keeps its original scan position
            collected[post.id] = post

        # sorted() is stable: equal dates keep scan order
        posts = tuple(sorted(collected.values(), key=lambda p: p.date, reverse=True))
        self._generation += 1
        snapshot = Snapshot(
            posts=posts,
            generation=self._generation,
            built_at=time.time(),
            by_id=MappingProxyType({post.id: post for post in posts}),
        )

        if self._epoch == epoch:
            self._snapshot = snapshot
        else:
            logger.info("Files changed during rebuild; snapshot not retained")

        logger.info(
            "Loaded %d posts (generation %d) in %.1f ms",
            len(posts),
            snapshot.generation,
            (time.monotonic() - started) * 1000,
        )
        return snapshot
