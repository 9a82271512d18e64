"""Records stored in and returned by the database."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class User:
    id: UUID
    created_at: datetime
    updated_at: datetime
    name: str


@dataclass(frozen=True)
class Feed:
    id: UUID
    created_at: datetime
    updated_at: datetime
    name: str
    url: str
    user_id: UUID
    last_fetched_at: datetime | None


@dataclass(frozen=True)
class FeedFollow:
    id: UUID
    created_at: datetime | None
    updated_at: datetime | None
    user_id: UUID
    feed_id: UUID


@dataclass(frozen=True)
class FeedFollowRow(FeedFollow):
    """A feed follow together with the names of its feed and user."""

    feed_name: str
    user_name: str


@dataclass(frozen=True)
class Post:
    id: UUID
    created_at: datetime | None
    updated_at: datetime | None
    title: str
    url: str
    description: str | None
    published_at: datetime | None
    feed_id: UUID


@dataclass(frozen=True)
class PostWithFeed(Post):
    """A post together with the name of the feed it came from."""

    feed_name: str