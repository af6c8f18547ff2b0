"""Response models for the JSON API (camelCase on the wire)."""

from __future__ import annotations

import dataclasses
import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .parser import Post
from .query import Page


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PostSummary(ApiModel):
    id: str
    title: str
    author: str
    date: datetime.date
    tags: list[str]
    excerpt: str
    read_time: int
    is_directory_post: bool

    @classmethod
    def from_post(cls, post: Post) -> "PostSummary":
        return cls(**dataclasses.asdict(post))


class PostDetail(PostSummary):
    content: str


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PostList(ApiModel):
    posts: list[PostSummary]
    pagination: Pagination

    @classmethod
    def from_page(cls, page: Page, **extra) -> "PostList":
        fields = {f.name: getattr(page, f.name) for f in dataclasses.fields(page)}
        fields.pop("posts")
        return cls(
            posts=[PostSummary.from_post(post) for post in page.posts],
            pagination=Pagination(**fields),
            **extra,
        )


class TaggedPostList(PostList):
    tag: str


class SearchResults(PostList):
    query: str
    results_count: int


class TagCount(ApiModel):
    tag: str
    count: int


class TagList(ApiModel):
    tags: list[TagCount]
