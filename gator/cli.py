"""The command-line entry point."""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence

from .commands import Command, CommandError, Commands, State, logged_in
from .config import read_config
from .database import Database, DatabaseError
from .handlers import (
    handle_add_feed,
    handle_agg,
    handle_browse,
    handle_feeds,
    handle_follow,
    handle_following,
    handle_login,
    handle_register,
    handle_reset,
    handle_unfollow,
    handle_users,
)
from .rss import FeedError


def build_commands() -> Commands:
    """Return the table of every available command."""
    commands = Commands()
    commands.register("login", handle_login)
    commands.register("register", handle_register)
    commands.register("reset", handle_reset)
    commands.register("users", handle_users)
    commands.register("agg", handle_agg)
    commands.register("addfeed", logged_in(handle_add_feed))
    commands.register("feeds", handle_feeds)
    commands.register("follow", logged_in(handle_follow))
    commands.register("following", handle_following)
    commands.register("unfollow", logged_in(handle_unfollow))
    commands.register("browse", logged_in(handle_browse))
    return commands


def main(argv: Sequence[str] | None = None) -> int:
    """Run one command given as ``<name> [args...]``; return the exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    try:
        config = read_config()
    except (OSError, ValueError) as exc:
        print(f"error reading config: {exc}", file=sys.stderr)
        return 1
    if not config.db_url:
        print("error opening the database: db_url is not set", file=sys.stderr)
        return 1
    try:
        database = Database.open(config.db_url)
    except DatabaseError as exc:
        print(f"error opening the database: {exc}", file=sys.stderr)
        return 1
    with database:
        if not args:
            print("Too few arguments", file=sys.stderr)
            return 1
        state = State(db=database, config=config)
        try:
            build_commands().run(state, Command(args[0], args[1:]))
        except (CommandError, DatabaseError, FeedError) as exc:
            print(exc, file=sys.stderr)
            return 1
        except KeyboardInterrupt:
            return 130
    return 0