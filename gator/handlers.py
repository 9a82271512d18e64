"""The handlers behind each command."""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime, timedelta, timezone
from fractions import Fraction

from .commands import Command, CommandError, State
from .database import DatabaseError, DuplicateError, NotFoundError
from .models import User
from .rss import FeedError, fetch_feed

logger = logging.getLogger(__name__)

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_NANOSECONDS = (1 << 63) - 1
_PUB_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"
_ZERO_TIME = "0001-01-01 00:00:00 +0000 UTC"
_INTEGER = re.compile(r"[+-]?\d+")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"1.5s"`` or ``"300ms"``."""
    rest = text
    negative = False
    if rest[:1] in ("+", "-") and rest:
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')
    total = Fraction(0)
    position = 0
    while position < len(rest):
        match = _COMPONENT.match(rest, position)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{text}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        if unit not in _UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        value = Fraction(int(whole or "0"))
        if fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        total += value * _UNITS[unit]
        position = match.end()
    limit = _MAX_NANOSECONDS + (1 if negative else 0)
    if total > limit:
        raise ValueError(f'time: invalid duration "{text}"')
    microseconds = round(total / 1000)
    return timedelta(microseconds=-microseconds if negative else microseconds)


def parse_pub_date(text: str) -> datetime | None:
    """Parse an RFC 1123 date with numeric zone; ``None`` if it does not fit."""
    try:
        return datetime.strptime(text, _PUB_DATE_FORMAT)
    except ValueError:
        return None


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    text = value.strftime("%Y-%m-%d %H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.strftime("%z") or "+0000"
    zone = "UTC" if value.utcoffset() in (None, timedelta(0)) else offset
    return f"{text} {offset} {zone}"


def handle_login(state: State, command: Command) -> None:
    if not command.args:
        raise CommandError(f"username is required; usage: {command.name} <name>")
    username = command.args[0]
    try:
        state.db.get_user(username)
    except DatabaseError as exc:
        raise CommandError(f"user {_quote(username)} does not exist") from exc
    try:
        state.config.set_user(username)
    except OSError as exc:
        raise CommandError(f"couldn't set current user: {exc}") from exc
    print("The user has been set.")


def handle_register(state: State, command: Command) -> None:
    if not command.args:
        raise CommandError(f"username required; usage: {command.name} <username>")
    username = command.args[0]
    try:
        state.db.get_user(username)
    except NotFoundError:
        pass
    else:
        raise CommandError(f"username {_quote(username)} already exists")
    now = datetime.now(timezone.utc)
    try:
        user = state.db.create_user(uuid.uuid4(), now, now, username)
    except DatabaseError as exc:
        raise CommandError(f"error creating user: {exc}") from exc
    try:
        state.config.set_user(username)
    except OSError as exc:
        raise CommandError(f"couldn't set current user: {exc}") from exc
    print("Username was created")
    print("USER DATA: ")
    print(
        f"{{\n  id: {user.id},\n  name: {user.name},\n"
        f"  created_at: {_format_time(user.created_at)},\n"
        f"  updated_at: {_format_time(user.updated_at)}\n}}"
    )


def handle_reset(state: State, command: Command) -> None:
    try:
        state.db.reset()
    except DatabaseError as exc:
        raise CommandError(f"error resetting database: {exc}") from exc
    print("Database reset was successful.")


def handle_users(state: State, command: Command) -> None:
    try:
        users = state.db.get_users()
    except DatabaseError as exc:
        raise CommandError(f"error getting all users: {exc}") from exc
    for user in users:
        suffix = " (current)" if user.name == state.config.current_user_name else ""
        print(f"* {user.name}{suffix}")


def handle_agg(state: State, command: Command) -> None:
    """Scrape feeds forever, one per interval, starting immediately."""
    if not command.args:
        raise CommandError("no arguments found; usage: agg <request interval>")
    interval = command.args[0]
    try:
        period = parse_duration(interval).total_seconds()
    except ValueError as exc:
        raise CommandError(f"error parsing duration: {exc}") from exc
    if period <= 0:
        raise CommandError("non-positive interval for agg")
    print(f"collecting feeds every {interval}")
    next_tick = time.monotonic() + period
    while True:
        scrape_feeds(state)
        delay = next_tick - time.monotonic()
        if delay > 0:
            time.sleep(delay)
            next_tick += period
        else:
            # Ticks missed while scraping are dropped; the next scrape starts now.
            next_tick += (int(-delay // period) + 1) * period


def scrape_feeds(state: State) -> int:
    """Fetch the feed due next and store its posts; return the number of items found."""
    try:
        feed = state.db.get_next_feed_to_fetch()
    except DatabaseError as exc:
        logger.warning("error getting next feed to fetch: %s", exc)
        return 0
    try:
        state.db.mark_feed_fetched(feed.id)
    except DatabaseError as exc:
        logger.warning("error marking feed as fetched: %s", exc)
    try:
        fresh = fetch_feed(feed.url)
    except FeedError as exc:
        logger.warning("error fetching next feed: %s", exc)
        return 0
    for item in fresh.items:
        try:
            state.db.create_post(
                item.title, item.link, item.description, parse_pub_date(item.pub_date), feed.id
            )
        except DuplicateError:
            continue
        except DatabaseError as exc:
            logger.warning("Couldn't create post: %s", exc)
    logger.info("Feed %s collected, %d posts found", feed.name, len(fresh.items))
    return len(fresh.items)


def handle_add_feed(state: State, command: Command, user: User) -> None:
    if len(command.args) < 2:
        raise CommandError("too few arguments, usage: addfeed <name> <url>")
    name, url = command.args[0], command.args[1]
    try:
        feed = state.db.create_feed(name, url, user.id)
    except DatabaseError as exc:
        raise CommandError(f"error creating new feed: {exc}") from exc
    try:
        state.db.create_feed_follow(user.id, feed.id)
    except DatabaseError as exc:
        raise CommandError(f"error following feed after creating feed: {exc}") from exc
    print("Feed was created")
    print("Feed DATA: ")
    print(
        f"{{\n  id: {feed.id},\n  name: {feed.name},\n  url: {feed.url},\n"
        f"  user_id: {feed.user_id},\n  created_at: {_format_time(feed.created_at)},\n"
        f"  updated_at: {_format_time(feed.updated_at)}\n}}"
    )


def handle_feeds(state: State, command: Command) -> None:
    try:
        feeds = state.db.get_feeds()
    except DatabaseError as exc:
        raise CommandError(f"error getting feeds from database: {exc}") from exc
    print("--- LIST OF ALL FEEDS ---")
    for number, feed in enumerate(feeds, start=1):
        print()
        print(f"-[ FEED {number} ]------------")
        print(f"name: {_quote(feed.name)}")
        print(f"url: {_quote(feed.url)}")
        try:
            owner = state.db.get_user_by_id(feed.user_id)
        except DatabaseError as exc:
            raise CommandError(f"error getting user by id referenced in feeds: {exc}") from exc
        print(f"created_by: {_quote(owner.name)}")
        print()


def handle_follow(state: State, command: Command, user: User) -> None:
    if not command.args:
        raise CommandError("no arguments found; usage: follow <feed-url>")
    try:
        feed = state.db.get_feed_by_url(command.args[0])
    except DatabaseError as exc:
        raise CommandError(f"error getting feeds by url: {exc}") from exc
    try:
        follow = state.db.create_feed_follow(user.id, feed.id)
    except DatabaseError as exc:
        raise CommandError(f"error creating feed follow: {exc}") from exc
    print("Creating feed follow success!")
    print(f"username: {_quote(follow.user_name)}")
    print(f"feed name: {_quote(follow.feed_name)}")


def handle_following(state: State, command: Command) -> None:
    try:
        follows = state.db.get_feed_follows_for_user(state.config.current_user_name)
    except DatabaseError as exc:
        raise CommandError(f"error getting all following feeds: {exc}") from exc
    print("--- LIST OF ALL FOLLOWING FEEDS ---")
    for number, follow in enumerate(follows, start=1):
        print()
        print(f"-[ FEED {number} ]------------")
        print(f"name: {_quote(follow.feed_name)}")
        print()


def handle_unfollow(state: State, command: Command, user: User) -> None:
    if not command.args:
        raise CommandError("error no argument found; usage: unfollow <feed-url>")
    try:
        feed = state.db.get_feed_by_url(command.args[0])
    except DatabaseError as exc:
        raise CommandError(f"error getting feed by url: {exc}") from exc
    try:
        state.db.delete_feed_follow(user.id, feed.id)
    except DatabaseError as exc:
        raise CommandError("error unfollowing feed") from exc
    print(f"You have unfollowed the feed {_quote(feed.name)} successfully!")


def handle_browse(state: State, command: Command, user: User) -> None:
    limit = 2
    if len(command.args) == 1:
        text = command.args[0]
        if not _INTEGER.fullmatch(text):
            raise CommandError(f"invalid limit: {text!r} is not an integer")
        limit = int(text)
    try:
        posts = state.db.get_posts_for_user(user.id, limit)
    except DatabaseError as exc:
        raise CommandError(f"error getting posts: {exc}") from exc
    print(f"Found {len(posts)} posts for user {user.name}:")
    print("--- LIST OF ALL POSTS ---")
    for number, post in enumerate(posts, start=1):
        print()
        print(f"-[ POST {number} ]------------")
        print(f"Published: {_quote(_format_time(post.published_at))}")
        print(f"Title: {_quote(post.title)}")
        print(f"Description: {_quote(post.description or '')}")
        print(f"Link: {post.url}")