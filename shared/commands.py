"""
Command tables: the HTTP verb and route template are resolved to a command
once, at the boundary; the command is then looked up in a handler table.
"""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from shared.results import Result

C = TypeVar("C", bound=Enum)
S = TypeVar("S")

Handler = Callable[..., Awaitable[Result]]


class UnknownCommandError(LookupError):
    def __init__(self, method: str, path: str):
        super().__init__(f"No command for {method} {path}")
        self.method = method
        self.path = path


class CommandTable(Generic[C, S]):
    def __init__(self, routes: dict[tuple[str, str], C], handlers: dict[C, Callable[..., Awaitable[Result]]]):
        missing = set(routes.values()) - set(handlers)
        if missing:
            raise ValueError(f"Commands without handlers: {sorted(c.name for c in missing)}")
        self._routes = routes
        self._handlers = handlers

    def resolve(self, method: str, path: str) -> C:
        try:
            return self._routes[(method.upper(), path)]
        except KeyError:
            raise UnknownCommandError(method, path) from None

    async def execute(self, command: C, service: S, **params: Any) -> Result:
        return await self._handlers[command](service, **params)
