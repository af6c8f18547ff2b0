"""
Directory Scanner Module.

Enumerates post sources under the content root: standalone ``*.md`` files
and folder posts (``<dir>/index.md`` with co-located assets).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

INDEX_FILE = "index.md"


@dataclass(frozen=True)
class PostSource:
    """One candidate post on disk."""

    kind: Literal["file", "dir"]
    path: Path
    index_path: Path | None = None

    @property
    def markdown_path(self) -> Path:
        return self.index_path if self.index_path is not None else self.path

    @property
    def identifier(self) -> str:
        return self.path.name


def _visible_entries(root: Path) -> list[Path]:
    return sorted(
        (entry for entry in root.iterdir() if not entry.name.startswith(".")),
        key=lambda entry: entry.name,
    )


def scan_sources(root: Path) -> list[PostSource]:
    """
    List post sources, standalone files first, each group sorted by name.

    A root-level ``index.md`` is not a post. Subdirectories without an
    ``index.md`` are skipped.
    """
    entries = _visible_entries(root)
    files = [
        PostSource(kind="file", path=entry)
        for entry in entries
        if entry.is_file() and entry.suffix == ".md" and entry.name != INDEX_FILE
    ]
    dirs = [
        PostSource(kind="dir", path=entry, index_path=entry / INDEX_FILE)
        for entry in entries
        if entry.is_dir() and (entry / INDEX_FILE).is_file()
    ]
    return files + dirs


def source_mtimes(root: Path) -> dict[str, float]:
    """
    Modification-time index used by the polling comparator.

    Keys are ``name.md`` for root markdown files and ``dir/index.md`` for
    folder posts. A missing root yields an empty index.
    """
    index: dict[str, float] = {}
    try:
        entries = _visible_entries(root)
    except FileNotFoundError:
        return index

    for entry in entries:
        try:
            if entry.is_file() and entry.suffix == ".md":
                index[entry.name] = entry.stat().st_mtime
            elif entry.is_dir():
                index_path = entry / INDEX_FILE
                if index_path.is_file():
                    index[f"{entry.name}/{INDEX_FILE}"] = index_path.stat().st_mtime
        except FileNotFoundError:
            # removed between listing and stat
            continue
    return index


def ensure_content_root(root: Path) -> bool:
    """Create a missing content root and seed it with sample posts.

    Returns:
        True if the root was created, False if it already existed.
    """
    if root.is_dir():
        return False
    root.mkdir(parents=True, exist_ok=True)
    for filename, content in SAMPLE_POSTS.items():
        (root / filename).write_text(content, encoding="utf-8")
    logger.info("Created content root %s with %d sample posts", root, len(SAMPLE_POSTS))
    return True


SAMPLE_POSTS = {
    "2024-01-01-welcome-to-my-blog.md": """---
title: Welcome to My Minimalist Blog
author: Blog Author
date: 2024-01-01
tags: welcome, introduction
excerpt: A warm welcome to my new minimalist blog platform
---

# Welcome to My Minimalist Blog

Welcome to my new blog! Posts are plain markdown files in a folder, and the
server picks up new and edited files on its own.

## Features

- **Plain files**: Write posts in markdown with a small frontmatter block
- **Infinite Scroll**: Seamlessly browse through all posts
- **Syntax Highlighting**: Code blocks are highlighted on the server
- **Tags and Search**: Filter by tag or search every field

## Code Example

```python
def greet_reader(name):
    print(f"Hello, {name}! Welcome to the blog.")


greet_reader("Reader")
```

Enjoy browsing through the content!
""",
    "2024-01-02-writing-posts.md": """---
title: Writing Posts
author: Blog Author
date: 2024-01-02
tags: [writing, markdown]
excerpt: How to add a post, with or without images
---

# Writing Posts

Drop a markdown file into the posts folder. The frontmatter block at the top
holds the title, author, date, tags and an optional excerpt.

## Folder posts

A post can also be a folder holding an `index.md` next to its images.
Relative image links such as `![diagram](diagram.png)` are served from that
folder automatically.

```yaml
title: My Folder Post
date: 2024-01-02
tags: images, guides
```
""",
    "2024-01-03-infinite-scroll-implementation.md": """---
title: Implementing Smooth Infinite Scroll
author: Blog Author
date: 2024-01-03
tags: javascript, ux, performance, infinite-scroll
excerpt: Learn how to implement efficient infinite scroll using Intersection Observer API
---

# Implementing Smooth Infinite Scroll

Infinite scroll provides a seamless browsing experience. The frontend of
this blog asks the API for one page at a time.

```javascript
const observer = new IntersectionObserver((entries) => {
  entries.forEach(entry => {
    if (entry.isIntersecting && !isLoading) {
      loadMorePosts();
    }
  });
}, { rootMargin: '100px' });

observer.observe(sentinel);
```

## Implementation Tips

1. Use a sentinel element at the bottom
2. Add loading states for better UX
3. Stop observing once `hasNext` is false
""",
}
