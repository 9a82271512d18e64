"""SQLite-backed storage for users, feeds, feed follows and posts."""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, TypeVar

from .models import Feed, FeedFollowRow, Post, PostWithFeed, User

T = TypeVar("T")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS feeds (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    name TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    last_fetched_at TEXT
);
CREATE TABLE IF NOT EXISTS feed_follows (
    id TEXT PRIMARY KEY,
    created_at TEXT,
    updated_at TEXT,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    UNIQUE (user_id, feed_id)
);
CREATE TABLE IF NOT EXISTS posts (
    id TEXT PRIMARY KEY,
    created_at TEXT,
    updated_at TEXT,
    title TEXT NOT NULL,
    url TEXT NOT NULL UNIQUE,
    description TEXT,
    published_at TEXT,
    feed_id TEXT NOT NULL REFERENCES feeds(id) ON DELETE CASCADE
);
"""

_USER_COLUMNS = "users.id, users.created_at, users.updated_at, users.name"
_FEED_COLUMNS = (
    "feeds.id, feeds.created_at, feeds.updated_at, feeds.name, feeds.url, "
    "feeds.user_id, feeds.last_fetched_at"
)
_FOLLOW_COLUMNS = (
    "feed_follows.id, feed_follows.created_at, feed_follows.updated_at, "
    "feed_follows.user_id, feed_follows.feed_id, feeds.name, users.name"
)
_POST_COLUMNS = (
    "posts.id, posts.created_at, posts.updated_at, posts.title, posts.url, "
    "posts.description, posts.published_at, posts.feed_id"
)


class DatabaseError(Exception):
    """A query failed."""


class NotFoundError(DatabaseError, LookupError):
    """A query that must return one row returned none."""


class DuplicateError(DatabaseError):
    """An insert would break a uniqueness constraint."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _to_datetime(text: str | None) -> datetime | None:
    return None if text is None else datetime.fromisoformat(text)


def _user(row: tuple) -> User:
    return User(uuid.UUID(row[0]), _to_datetime(row[1]), _to_datetime(row[2]), row[3])


def _feed(row: tuple) -> Feed:
    return Feed(
        id=uuid.UUID(row[0]),
        created_at=_to_datetime(row[1]),
        updated_at=_to_datetime(row[2]),
        name=row[3],
        url=row[4],
        user_id=uuid.UUID(row[5]),
        last_fetched_at=_to_datetime(row[6]),
    )


def _follow(row: tuple) -> FeedFollowRow:
    return FeedFollowRow(
        id=uuid.UUID(row[0]),
        created_at=_to_datetime(row[1]),
        updated_at=_to_datetime(row[2]),
        user_id=uuid.UUID(row[3]),
        feed_id=uuid.UUID(row[4]),
        feed_name=row[5],
        user_name=row[6],
    )


def _post_fields(row: tuple) -> dict[str, Any]:
    return {
        "id": uuid.UUID(row[0]),
        "created_at": _to_datetime(row[1]),
        "updated_at": _to_datetime(row[2]),
        "title": row[3],
        "url": row[4],
        "description": row[5],
        "published_at": _to_datetime(row[6]),
        "feed_id": uuid.UUID(row[7]),
    }


def _post(row: tuple) -> Post:
    return Post(**_post_fields(row))


def _post_with_feed(row: tuple) -> PostWithFeed:
    return PostWithFeed(**_post_fields(row), feed_name=row[8])


class Database:
    """Queries over an SQLite connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        connection.isolation_level = None
        connection.execute("PRAGMA foreign_keys = ON")
        self._conn = connection

    @classmethod
    def open(cls, path: str | Path) -> Database:
        """Open (creating if needed) the database at ``path`` with its schema."""
        try:
            connection = sqlite3.connect(str(path))
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc
        database = cls(connection)
        database.create_schema()
        return database

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        try:
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run the enclosed queries atomically; roll back if an exception escapes."""
        if self._conn.in_transaction:
            raise DatabaseError("a transaction is already in progress")
        self._conn.execute("BEGIN")
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateError(f"duplicate key value violates unique constraint: {exc}") from exc
            raise DatabaseError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise DatabaseError(str(exc)) from exc

    def _one(self, sql: str, params: tuple, convert: Callable[[tuple], T]) -> T:
        row = self._execute(sql, params).fetchone()
        if row is None:
            raise NotFoundError("no rows in result set")
        return convert(row)

    def _many(self, sql: str, params: tuple, convert: Callable[[tuple], T]) -> list[T]:
        return [convert(row) for row in self._execute(sql, params).fetchall()]

    # users

    def create_user(self, id: uuid.UUID, created_at: datetime, updated_at: datetime, name: str) -> User:
        self._execute(
            "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
            (str(id), _to_text(created_at), _to_text(updated_at), name),
        )
        return self.get_user_by_id(id)

    def get_user(self, name: str) -> User:
        return self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE name = ?", (name,), _user)

    def get_user_by_id(self, id: uuid.UUID) -> User:
        return self._one(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (str(id),), _user)

    def get_users(self) -> list[User]:
        return self._many(f"SELECT {_USER_COLUMNS} FROM users ORDER BY rowid", (), _user)

    def reset(self) -> None:
        """Delete every user, and with them their feeds, follows and posts."""
        self._execute("DELETE FROM users")

    # feeds

    def create_feed(self, name: str, url: str, user_id: uuid.UUID) -> Feed:
        feed_id = uuid.uuid4()
        stamp = _to_text(_now())
        self._execute(
            "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) VALUES (?, ?, ?, ?, ?, ?)",
            (str(feed_id), stamp, stamp, name, url, str(user_id)),
        )
        return self.get_feed_by_id(feed_id)

    def get_feed_by_id(self, id: uuid.UUID) -> Feed:
        return self._one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE id = ?", (str(id),), _feed)

    def get_feed_by_url(self, url: str) -> Feed:
        return self._one(f"SELECT {_FEED_COLUMNS} FROM feeds WHERE url = ?", (url,), _feed)

    def get_feeds(self) -> list[Feed]:
        return self._many(f"SELECT {_FEED_COLUMNS} FROM feeds ORDER BY rowid", (), _feed)

    def get_next_feed_to_fetch(self) -> Feed:
        """Return the feed never fetched, or else fetched longest ago."""
        return self._one(
            f"SELECT {_FEED_COLUMNS} FROM feeds "
            "ORDER BY last_fetched_at IS NOT NULL, last_fetched_at ASC, rowid ASC LIMIT 1",
            (),
            _feed,
        )

    def mark_feed_fetched(self, id: uuid.UUID) -> None:
        stamp = _to_text(_now())
        self._execute(
            "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
            (stamp, stamp, str(id)),
        )

    # feed follows

    def create_feed_follow(self, user_id: uuid.UUID, feed_id: uuid.UUID) -> FeedFollowRow:
        follow_id = uuid.uuid4()
        stamp = _to_text(_now())
        self._execute(
            "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) VALUES (?, ?, ?, ?, ?)",
            (str(follow_id), stamp, stamp, str(user_id), str(feed_id)),
        )
        return self._one(
            f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows "
            "INNER JOIN feeds ON feed_follows.feed_id = feeds.id "
            "INNER JOIN users ON feed_follows.user_id = users.id "
            "WHERE feed_follows.id = ?",
            (str(follow_id),),
            _follow,
        )

    def delete_feed_follow(self, user_id: uuid.UUID, feed_id: uuid.UUID) -> None:
        self._execute(
            "DELETE FROM feed_follows WHERE user_id = ? AND feed_id = ?",
            (str(user_id), str(feed_id)),
        )

    def get_feed_follows_for_user(self, name: str) -> list[FeedFollowRow]:
        return self._many(
            f"SELECT {_FOLLOW_COLUMNS} FROM feed_follows "
            "INNER JOIN feeds ON feed_follows.feed_id = feeds.id "
            "INNER JOIN users ON feed_follows.user_id = users.id "
            "WHERE users.name = ? ORDER BY feed_follows.rowid",
            (name,),
            _follow,
        )

    # posts

    def create_post(
        self,
        title: str,
        url: str,
        description: str | None,
        published_at: datetime | None,
        feed_id: uuid.UUID,
    ) -> Post:
        post_id = uuid.uuid4()
        stamp = _to_text(_now())
        self._execute(
            "INSERT INTO posts (id, created_at, updated_at, title, url, description, published_at, feed_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (str(post_id), stamp, stamp, title, url, description, _to_text(published_at), str(feed_id)),
        )
        return self._one(f"SELECT {_POST_COLUMNS} FROM posts WHERE id = ?", (str(post_id),), _post)

    def get_posts_for_user(self, user_id: uuid.UUID, limit: int) -> list[PostWithFeed]:
        """Return up to ``limit`` posts from feeds the user follows, newest first."""
        if limit < 0:
            raise DatabaseError("LIMIT must not be negative")
        return self._many(
            f"SELECT {_POST_COLUMNS}, feeds.name FROM posts "
            "INNER JOIN feed_follows ON posts.feed_id = feed_follows.feed_id "
            "INNER JOIN feeds ON posts.feed_id = feeds.id "
            "WHERE feed_follows.user_id = ? "
            "ORDER BY posts.published_at IS NULL DESC, posts.published_at DESC LIMIT ?",
            (str(user_id), limit),
            _post_with_feed,
        )