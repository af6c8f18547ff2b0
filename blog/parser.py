"""
Post Parser Module.

Turns one markdown file with frontmatter into a rendered Post.

Frontmatter is a flat ``key: value`` scanner, not a YAML parser: nested maps
and multi-line lists are not supported. Only the ``tags`` value may use YAML
flow syntax (``[a, "b"]``).
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

import bleach
import markdown
import yaml

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "Anonymous"
EXCERPT_LENGTH = 200
WORDS_PER_MINUTE = 200

_FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---(?:\n|\Z)(.*)\Z", re.DOTALL)
_QUOTES_RE = re.compile(r"^[\"']|[\"']$")
_BRACKETS_RE = re.compile(r"^\[|\]$")
# ![alt](src "optional title")
_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\(([^)\s]+)((?:\s+"[^"]*")?)\)')
_ABSOLUTE_REF_RE = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:|/|#)")

ALLOWED_TAGS = list(bleach.sanitizer.ALLOWED_TAGS) + [
    "p", "br", "hr", "pre", "code", "span", "div", "img", "del",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "table", "thead", "tbody", "tr", "th", "td",
]
ALLOWED_ATTRIBUTES = {
    **bleach.sanitizer.ALLOWED_ATTRIBUTES,
    "img": ["src", "alt", "title"],
    "code": ["class"],
    "span": ["class"],
    "div": ["class"],
    "pre": ["class"],
    "th": ["align"],
    "td": ["align"],
}

MARKDOWN_EXTENSIONS = ["fenced_code", "codehilite", "tables", "sane_lists", "nl2br"]
MARKDOWN_CONFIG = {
    # Unknown or missing languages fall back to Pygments' lexer guessing
    "codehilite": {"guess_lang": True, "css_class": "highlight"},
    # align="..." survives sanitizing, style="text-align: ..." does not
    "tables": {"use_align_attribute": True},
}


@dataclass(frozen=True)
class Post:
    """Parsed representation of one content file."""

    id: str
    title: str
    author: str
    date: date
    tags: tuple[str, ...]
    excerpt: str
    content: str
    read_time: int
    is_directory_post: bool
    source_path: Path


def split_frontmatter(text: str) -> tuple[dict[str, str], str]:
    """Split a leading ``---`` block from the markdown body.

    Returns:
        (metadata, body). Without a well-formed block the metadata is empty
        and the whole text is the body.
    """
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, text

    metadata: dict[str, str] = {}
    for line in match.group(1).split("\n"):
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        metadata[key] = _QUOTES_RE.sub("", value.strip())
    return metadata, match.group(2)


def parse_tags(raw: str | None) -> tuple[str, ...]:
    """Parse a tags value from either list syntax or a comma separated scalar."""
    if not raw:
        return ()

    tags: list[str] | None = None
    if raw.lstrip().startswith("["):
        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError:
            parsed = None
        if isinstance(parsed, list):
            tags = [str(item).strip() for item in parsed if item is not None]

    if tags is None:
        cleaned = _BRACKETS_RE.sub("", raw.strip())
        tags = [_QUOTES_RE.sub("", token.strip()).strip() for token in cleaned.split(",")]

    # case-insensitive de-duplication, first spelling wins
    seen: set[str] = set()
    result = []
    for tag in tags:
        if tag and tag.casefold() not in seen:
            seen.add(tag.casefold())
            result.append(tag)
    return tuple(result)


def parse_date(raw: str | None) -> date | None:
    """Parse ``YYYY-MM-DD`` (optionally followed by a time); None if invalid."""
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


def rewrite_image_paths(body: str, post_dir_name: str) -> str:
    """Point relative image references at the post's asset route."""

    def _replace(match: re.Match[str]) -> str:
        alt, src, title = match.groups()
        if _ABSOLUTE_REF_RE.match(src):
            return match.group(0)
        if src.startswith("./"):
            src = src[2:]
        return f"![{alt}](/api/posts/{post_dir_name}/assets/{src}{title})"

    return _IMAGE_RE.sub(_replace, body)


def render_markdown(body: str) -> str:
    """Render markdown to sanitized HTML with highlighted code blocks."""
    html = markdown.markdown(
        body, extensions=MARKDOWN_EXTENSIONS, extension_configs=MARKDOWN_CONFIG
    )
    return bleach.clean(html, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES)


def make_excerpt(body: str, length: int = EXCERPT_LENGTH) -> str:
    text = body.strip()
    if len(text) <= length:
        return text
    return text[:length] + "..."


def reading_time(body: str, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Minutes to read the body, rounded up, never below one."""
    return max(1, math.ceil(len(body.split()) / words_per_minute))


def humanize_id(post_id: str) -> str:
    return post_id.replace("-", " ")


def _creation_date(stat: os.stat_result) -> date:
    created = getattr(stat, "st_birthtime", None) or stat.st_mtime
    return datetime.fromtimestamp(created).date()


def parse_post(
    path: Path,
    identifier: str,
    *,
    excerpt_length: int = EXCERPT_LENGTH,
    words_per_minute: int = WORDS_PER_MINUTE,
) -> Post | None:
    """
    Parse one post file.

    Args:
        path: Markdown file (a standalone ``*.md`` or a folder's ``index.md``)
        identifier: File name for standalone posts, directory name for folder posts
        excerpt_length: Character budget for derived excerpts
        words_per_minute: Reading speed for ``read_time``

    Returns:
        The parsed Post, or None if the file could not be read or parsed.
        Failures are logged, never raised.
    """
    try:
        text = path.read_text(encoding="utf-8").replace("\r\n", "\n")
        stat = path.stat()

        is_directory_post = path.name == "index.md"
        post_dir_name = path.parent.name
        post_id = post_dir_name if is_directory_post else Path(identifier).stem

        metadata, body = split_frontmatter(text)
        rendered_source = rewrite_image_paths(body, post_dir_name) if is_directory_post else body

        post_date = parse_date(metadata.get("date"))
        if post_date is None:
            if metadata.get("date"):
                logger.warning("Unparseable date %r in %s", metadata["date"], path)
            post_date = _creation_date(stat)

        return Post(
            id=post_id,
            title=metadata.get("title") or humanize_id(post_id),
            author=metadata.get("author") or DEFAULT_AUTHOR,
            date=post_date,
            tags=parse_tags(metadata.get("tags")),
            excerpt=metadata.get("excerpt") or make_excerpt(body, excerpt_length),
            content=render_markdown(rendered_source),
            read_time=reading_time(body, words_per_minute),
            is_directory_post=is_directory_post,
            source_path=path,
        )
    except Exception:
        logger.exception("Failed to parse post %s", path)
        return None
