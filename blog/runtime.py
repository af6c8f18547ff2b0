"""
Content Runtime Module.

Runs blocking disk work (cache rebuilds, polling scans) in a thread pool so
the event loop keeps serving requests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .cache import PostCache, Snapshot

T = TypeVar("T")


@dataclass
class ContentRuntime:
    """
    Disk I/O pool for the post cache.

    Snapshot reads are serialized so that concurrent requests arriving after
    an invalidation trigger one rebuild, not one each. Polling scans only
    stat files and skip the lock.
    """

    max_workers: int = 2
    executor: ThreadPoolExecutor = field(init=False)
    rebuild_lock: asyncio.Lock = field(init=False)

    def __post_init__(self) -> None:
        self.executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="blog-io"
        )
        self.rebuild_lock = asyncio.Lock()

    async def read_snapshot(self, cache: PostCache) -> Snapshot:
        """Current snapshot of ``cache``, rebuilt off the event loop if needed."""
        async with self.rebuild_lock:
            return await self.offload(cache.get)

    async def offload(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking call in the pool without taking the rebuild lock."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    def shutdown(self) -> None:
        # in-flight scans finish on their own; nothing waits for them
        self.executor.shutdown(wait=False, cancel_futures=True)
