"""Command dispatch and the state that handlers share."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import wraps
from typing import Callable

from .config import Config
from .database import Database, DatabaseError
from .models import User


class CommandError(Exception):
    """A command could not be carried out."""


@dataclass
class State:
    db: Database
    config: Config


@dataclass
class Command:
    name: str
    args: list[str] = field(default_factory=list)


Handler = Callable[[State, Command], None]
UserHandler = Callable[[State, Command, User], None]


@dataclass
class Commands:
    """A table of command names and the handlers that carry them out."""

    handlers: dict[str, Handler] = field(default_factory=dict)

    def register(self, name: str, handler: Handler) -> None:
        self.handlers[name] = handler

    def run(self, state: State, command: Command) -> None:
        try:
            handler = self.handlers[command.name]
        except KeyError:
            raise CommandError(f"command not found: {command.name}") from None
        handler(state, command)


def logged_in(handler: UserHandler) -> Handler:
    """Wrap ``handler`` so it receives the current user, looked up first."""

    @wraps(handler)
    def wrapper(state: State, command: Command) -> None:
        try:
            user = state.db.get_user(state.config.current_user_name)
        except DatabaseError as exc:
            raise CommandError(f"error getting user: {exc}") from exc
        handler(state, command, user)

    return wrapper