"""Shared fixtures: markdown post writers and in-memory Post factories."""

from datetime import date
from pathlib import Path

import pytest

from blog.parser import Post


def _frontmatter(meta: dict[str, str]) -> str:
    if not meta:
        return ""
    lines = [f"{key}: {value}" for key, value in meta.items()]
    return "---\n" + "\n".join(lines) + "\n---\n"


@pytest.fixture
def write_post():
    """Write a post file: ``write_post(root, "name.md", "body", title=...)``.

    Pass ``"dir/index.md"`` as the name to create a folder post.
    """

    def _write(root: Path, name: str, body: str = "Body text.", **meta: str) -> Path:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_frontmatter(meta) + body, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_post():
    """Build a Post without touching the filesystem."""

    def _make(
        post_id: str,
        post_date: date = date(2024, 1, 1),
        *,
        title: str | None = None,
        author: str = "Anonymous",
        tags: tuple[str, ...] = (),
        excerpt: str = "",
        content: str = "<p>content</p>",
    ) -> Post:
        return Post(
            id=post_id,
            title=title or post_id.replace("-", " "),
            author=author,
            date=post_date,
            tags=tags,
            excerpt=excerpt,
            content=content,
            read_time=1,
            is_directory_post=False,
            source_path=Path(f"{post_id}.md"),
        )

    return _make
