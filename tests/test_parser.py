"""
Unit tests for the post parser.

Covers frontmatter scanning, tag parsing, markdown rendering with code
highlighting and sanitization, folder-post image rewriting and the
skip-on-failure behaviour.
"""

import logging
from datetime import date

import pytest

from blog.parser import (
    make_excerpt,
    parse_date,
    parse_post,
    parse_tags,
    reading_time,
    rewrite_image_paths,
    split_frontmatter,
)


class TestSplitFrontmatter:
    """Tests for split_frontmatter()."""

    def test_flat_key_values(self):
        """key: value lines become metadata, the rest is body."""
        text = "---\ntitle: Hello\nauthor: Jo\n---\n# Body\n"
        metadata, body = split_frontmatter(text)
        assert metadata == {"title": "Hello", "author": "Jo"}
        assert body == "# Body\n"

    def test_splits_at_first_colon_and_strips_quotes(self):
        """Values keep later colons; surrounding quotes are removed."""
        metadata, _ = split_frontmatter('---\ntitle: "Hello: World"\n---\nbody')
        assert metadata["title"] == "Hello: World"

    def test_single_quotes_stripped(self):
        metadata, _ = split_frontmatter("---\nauthor: 'Sam'\n---\nbody")
        assert metadata["author"] == "Sam"

    def test_lines_without_colon_ignored(self):
        metadata, _ = split_frontmatter("---\njust text\n: novalue\ntitle: T\n---\nbody")
        assert metadata == {"title": "T"}

    def test_no_frontmatter_means_all_body(self):
        text = "# Just markdown\n\nNo metadata."
        assert split_frontmatter(text) == ({}, text)

    def test_unclosed_block_is_body(self):
        """Without a closing fence the block is not frontmatter."""
        text = "---\ntitle: Oops\n\n# Heading"
        assert split_frontmatter(text) == ({}, text)

    def test_closing_fence_at_end_of_file(self):
        metadata, body = split_frontmatter("---\ntitle: Only meta\n---")
        assert metadata == {"title": "Only meta"}
        assert body == ""


class TestParseTags:
    """Tests for parse_tags()."""

    def test_comma_separated(self):
        assert parse_tags("javascript, web-development") == (
            "javascript",
            "web-development",
        )

    def test_json_list(self):
        assert parse_tags('["python", "web"]') == ("python", "web")

    def test_bracketed_unquoted_list(self):
        assert parse_tags("[python, web]") == ("python", "web")

    def test_single_quoted_list(self):
        assert parse_tags("['JavaScript', 'ux']") == ("JavaScript", "ux")

    def test_malformed_list_falls_back_to_commas(self):
        """A list that fails structured parsing is split on commas."""
        assert parse_tags("[broken, 'x") == ("broken", "x")

    def test_empty_tokens_dropped(self):
        assert parse_tags("a,, ,b,") == ("a", "b")

    def test_case_insensitive_duplicates_removed(self):
        """First spelling wins."""
        assert parse_tags("Python, python, PYTHON, web") == ("Python", "web")

    def test_single_scalar(self):
        assert parse_tags("solo") == ("solo",)

    @pytest.mark.parametrize("raw", [None, "", "[]"])
    def test_empty_values(self, raw):
        assert parse_tags(raw) == ()


class TestHelpers:
    """Tests for date, excerpt, reading time and image rewriting helpers."""

    def test_parse_date_plain(self):
        assert parse_date("2024-01-02") == date(2024, 1, 2)

    def test_parse_date_with_time(self):
        assert parse_date("2024-03-05T10:00:00") == date(2024, 3, 5)

    @pytest.mark.parametrize("raw", [None, "", "yesterday", "2024-13-40"])
    def test_parse_date_invalid(self, raw):
        assert parse_date(raw) is None

    def test_excerpt_truncates_long_body(self):
        body = "x" * 300
        excerpt = make_excerpt(body, 200)
        assert excerpt == "x" * 200 + "..."

    def test_excerpt_short_body_untouched(self):
        assert make_excerpt("  short body \n", 200) == "short body"

    def test_reading_time_rounds_up(self):
        assert reading_time("word " * 450, 200) == 3

    def test_reading_time_minimum_one(self):
        assert reading_time("", 200) == 1

    def test_rewrite_relative_image(self):
        result = rewrite_image_paths("![x](pic.png)", "my-post")
        assert result == "![x](/api/posts/my-post/assets/pic.png)"

    def test_rewrite_drops_dot_slash(self):
        result = rewrite_image_paths("![x](./img/pic.png)", "my-post")
        assert result == "![x](/api/posts/my-post/assets/img/pic.png)"

    def test_rewrite_keeps_title(self):
        result = rewrite_image_paths('![x](pic.png "A caption")', "my-post")
        assert result == '![x](/api/posts/my-post/assets/pic.png "A caption")'

    @pytest.mark.parametrize(
        "ref",
        [
            'https://example.com/a.png "Remote"',
            "https://example.com/a.png",
            "http://example.com/a.png",
            "/static/a.png",
            "data:image/png;base64,AAAA",
        ],
    )
    def test_absolute_images_untouched(self, ref):
        text = f"![x]({ref})"
        assert rewrite_image_paths(text, "my-post") == text


class TestParsePost:
    """Tests for parse_post() against files on disk."""

    def test_full_frontmatter(self, tmp_path, write_post):
        path = write_post(
            tmp_path,
            "2024-01-02-hello.md",
            "# Hello\n\nSome words here.",
            title="Hello There",
            author="Blog Author",
            date="2024-01-02",
            tags="python, Web",
            excerpt="Custom excerpt",
        )
        post = parse_post(path, path.name)

        assert post is not None
        assert post.id == "2024-01-02-hello"
        assert post.title == "Hello There"
        assert post.author == "Blog Author"
        assert post.date == date(2024, 1, 2)
        assert post.tags == ("python", "Web")
        assert post.excerpt == "Custom excerpt"
        assert post.is_directory_post is False
        assert "<h1>Hello</h1>" in post.content

    def test_defaults_without_frontmatter(self, tmp_path):
        path = tmp_path / "my-first-post.md"
        path.write_text("Just a body.", encoding="utf-8")

        post = parse_post(path, path.name)

        assert post.title == "my first post"
        assert post.author == "Anonymous"
        assert post.tags == ()
        assert post.excerpt == "Just a body."
        # freshly written file: creation date is today
        assert post.date == date.today()

    def test_invalid_date_falls_back_to_file_date(self, tmp_path, write_post, caplog):
        path = write_post(tmp_path, "a.md", date="someday")
        with caplog.at_level(logging.WARNING):
            post = parse_post(path, path.name)
        assert post.date == date.today()
        assert "Unparseable date" in caplog.text

    def test_parse_is_idempotent(self, tmp_path, write_post):
        """Parsing an unmodified file twice yields equal posts."""
        path = write_post(tmp_path, "a.md", "Text\n\n```python\nx = 1\n```", tags="a, b")
        assert parse_post(path, path.name) == parse_post(path, path.name)

    def test_crlf_frontmatter(self, tmp_path):
        path = tmp_path / "win.md"
        path.write_bytes(b"---\r\ntitle: Windows\r\n---\r\nBody\r\n")
        post = parse_post(path, path.name)
        assert post.title == "Windows"

    def test_folder_post_rewrites_images(self, tmp_path, write_post):
        path = write_post(
            tmp_path,
            "my-post/index.md",
            "![x](pic.png)\n\n![remote](https://example.com/r.png)",
            title="Folder",
        )
        post = parse_post(path, "my-post")

        assert post.id == "my-post"
        assert post.is_directory_post is True
        assert "/api/posts/my-post/assets/pic.png" in post.content
        assert "https://example.com/r.png" in post.content

    def test_folder_post_titled_image_rewritten(self, tmp_path, write_post):
        path = write_post(tmp_path, "my-post/index.md", '![x](pic.png "A caption")')
        post = parse_post(path, "my-post")
        assert 'src="/api/posts/my-post/assets/pic.png"' in post.content
        assert 'title="A caption"' in post.content

    def test_table_alignment_kept(self, tmp_path, write_post):
        path = write_post(tmp_path, "table.md", "| a | b |\n|:--|--:|\n| 1 | 2 |\n")
        post = parse_post(path, path.name)
        assert '<td align="left">1</td>' in post.content
        assert '<th align="right">b</th>' in post.content

    def test_standalone_post_keeps_relative_images(self, tmp_path, write_post):
        path = write_post(tmp_path, "plain.md", "![x](pic.png)")
        post = parse_post(path, path.name)
        assert "/api/posts/" not in post.content
        assert 'src="pic.png"' in post.content

    def test_code_block_highlighted(self, tmp_path, write_post):
        path = write_post(tmp_path, "code.md", "```python\ndef greet():\n    pass\n```")
        post = parse_post(path, path.name)
        assert '<div class="highlight">' in post.content
        assert '<span class="k">def</span>' in post.content

    def test_unknown_language_still_renders(self, tmp_path, write_post):
        """Unknown languages fall back to auto-detection instead of failing."""
        path = write_post(tmp_path, "code.md", "```notalanguage\nprint('hi')\n```")
        post = parse_post(path, path.name)
        assert post is not None
        assert '<div class="highlight">' in post.content
        assert "print" in post.content

    def test_html_is_sanitized(self, tmp_path, write_post):
        path = write_post(tmp_path, "xss.md", "Hi\n\n<script>alert(1)</script>\n")
        post = parse_post(path, path.name)
        assert "<script>" not in post.content
        assert "&lt;script&gt;" in post.content

    def test_single_newlines_become_breaks(self, tmp_path, write_post):
        path = write_post(tmp_path, "breaks.md", "line one\nline two")
        post = parse_post(path, path.name)
        assert "<br" in post.content

    def test_read_time(self, tmp_path, write_post):
        path = write_post(tmp_path, "long.md", "word " * 401)
        assert parse_post(path, path.name).read_time == 3

    def test_unreadable_file_returns_none(self, tmp_path, caplog):
        """Parse failures are logged and the post is skipped."""
        path = tmp_path / "binary.md"
        path.write_bytes(b"\xff\xfe\x00bad utf-8 \x80")
        with caplog.at_level(logging.ERROR):
            assert parse_post(path, path.name) is None
        assert "Failed to parse post" in caplog.text

    def test_missing_file_returns_none(self, tmp_path):
        assert parse_post(tmp_path / "gone.md", "gone.md") is None
