"""Change detection for the post cache: native filesystem events plus polling."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .cache import PostCache
from .runtime import ContentRuntime
from .scanner import source_mtimes

logger = logging.getLogger(__name__)

# opened/closed-without-write events fire on every rebuild read
RELEVANT_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}
)


class WatchMode(str, Enum):
    """How native filesystem events are being received."""

    RECURSIVE = "recursive"
    FLAT_WITH_SUBDIRS = "flat-with-subdirs"
    POLLING_ONLY = "polling-only"


@dataclass(frozen=True)
class MtimeChanges:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    modified: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    def describe(self) -> str:
        parts = []
        for label, keys in (
            ("added", self.added),
            ("removed", self.removed),
            ("modified", self.modified),
        ):
            if keys:
                parts.append(f"{label} {', '.join(keys)}")
        return "; ".join(parts)


@dataclass
class MtimeIndex:
    """Per source-key mtime change detection."""

    mtimes: dict[str, float] = field(default_factory=dict)

    def update(self, current: dict[str, float]) -> MtimeChanges:
        """Diff against the stored index, then store ``current`` unconditionally."""
        previous = self.mtimes
        changes = MtimeChanges(
            added=tuple(sorted(current.keys() - previous.keys())),
            removed=tuple(sorted(previous.keys() - current.keys())),
            modified=tuple(
                sorted(
                    key
                    for key in current.keys() & previous.keys()
                    if current[key] != previous[key]
                )
            ),
        )
        self.mtimes = dict(current)
        return changes


class PostEventHandler(FileSystemEventHandler):
    """Forwards create/modify/delete/move events on ``*.md`` paths."""

    def __init__(self, on_change: Callable[[str, str], None]):
        super().__init__()
        self.on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in RELEVANT_EVENTS:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            path = os.fsdecode(raw) if raw else ""
            if path.endswith(".md"):
                self.on_change(event.event_type, path)
                return


@dataclass
class ChangeDetector:
    """
    Keeps the post cache coherent with the content directory.

    Native events give low-latency invalidation where the host supports them.
    The polling loop runs regardless, since events are unreliable on
    bind-mounted and network volumes.
    """

    root: Path
    cache: PostCache
    runtime: ContentRuntime
    poll_interval: float = 2.0  # seconds
    poll_throttle: float = 1.5  # seconds
    watch_events: bool = True
    observer_factory: Callable[[], BaseObserver] = Observer
    clock: Callable[[], float] = time.monotonic
    index: MtimeIndex = field(default_factory=MtimeIndex)
    mode: WatchMode | None = None
    observer: BaseObserver | None = None
    task: asyncio.Task[None] | None = None
    running: bool = False
    _last_check: float = field(default=float("-inf"), repr=False)

    async def start(self) -> None:
        """Prime the mtime index, establish watches and start polling."""
        if self.running:
            return
        self.index.mtimes = await self.runtime.offload(source_mtimes, self.root)
        self.mode = self._start_watching()
        self.running = True
        self.task = asyncio.create_task(self._loop())
        logger.info(
            "ChangeDetector started (mode=%s, poll every %.1fs)",
            self.mode.value,
            self.poll_interval,
        )

    async def stop(self) -> None:
        """Stop polling and tear down the observer."""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        if self.observer is not None:
            await self.runtime.offload(self._stop_observer, self.observer)
            self.observer = None
        logger.info("ChangeDetector stopped")

    def check(self) -> MtimeChanges | None:
        """
        Compare current mtimes with the stored index and invalidate on change.

        Returns:
            The detected changes, or None when throttled.
        """
        now = self.clock()
        if now - self._last_check < self.poll_throttle:
            return None
        self._last_check = now

        changes = self.index.update(source_mtimes(self.root))
        if changes:
            logger.info("Post change detected: %s", changes.describe())
            self.cache.invalidate("polling")
        return changes

    def _on_event(self, event_type: str, path: str) -> None:
        logger.info("Post %s: %s", event_type, path)
        self.cache.invalidate(f"{event_type} {path}")

    def _start_watching(self) -> WatchMode:
        if not self.watch_events:
            logger.info("Native file watching disabled, using polling only")
            return WatchMode.POLLING_ONLY

        handler = PostEventHandler(self._on_event)
        try:
            self.observer = self._start_observer(handler, [(self.root, True)])
            logger.info("Watching posts directory recursively: %s", self.root)
            return WatchMode.RECURSIVE
        except Exception as exc:
            logger.info("Recursive watching not available (%s), trying flat mode", exc)

        try:
            subdirs = [
                entry
                for entry in sorted(self.root.iterdir())
                if entry.is_dir() and not entry.name.startswith(".")
            ]
            targets = [(self.root, False)] + [(subdir, False) for subdir in subdirs]
            self.observer = self._start_observer(handler, targets)
            logger.info(
                "Watching posts directory (non-recursive) plus %d subdirectories: %s",
                len(subdirs),
                self.root,
            )
            return WatchMode.FLAT_WITH_SUBDIRS
        except Exception as exc:
            logger.warning("Could not watch posts directory (%s); polling only", exc)
            return WatchMode.POLLING_ONLY

    def _start_observer(
        self, handler: PostEventHandler, targets: list[tuple[Path, bool]]
    ) -> BaseObserver:
        observer = self.observer_factory()
        try:
            for path, recursive in targets:
                observer.schedule(handler, str(path), recursive=recursive)
            observer.start()
        except Exception:
            self._stop_observer(observer)
            raise
        return observer

    @staticmethod
    def _stop_observer(observer: BaseObserver) -> None:
        observer.unschedule_all()
        if observer.is_alive():
            observer.stop()
            observer.join(timeout=5)

    async def _loop(self) -> None:
        """Polling loop: the correctness backstop for missed events."""
        while self.running:
            try:
                await asyncio.sleep(self.poll_interval)
                await self.runtime.offload(self.check)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.error("ChangeDetector polling error", exc_info=True)
