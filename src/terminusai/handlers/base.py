"""Registry mapping action types to the handlers that execute them."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

# Handlers receive the validated action for their type and return observation
# text. Domain failures belong in that text; only infrastructure failures raise.
Handler = Callable[[Any], str]

MAX_OBSERVATION_CHARS = 8000
SKIPPED_OBSERVATION = "skipped by user"


class ActionDispatcher:
    """Looks up the handler registered for an action type."""

    def __init__(self, handlers: Mapping[str, Handler] | None = None) -> None:
        self._handlers: dict[str, Handler] = dict(handlers or {})

    def register(self, action_type: str, handler: Handler) -> None:
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> Handler | None:
        return self._handlers.get(action_type)

    @property
    def types(self) -> list[str]:
        return sorted(self._handlers)


def resolve_path(working_directory: str | Path, value: str) -> Path:
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return (Path(working_directory) / path).resolve()


def truncate(text: str, limit: int = MAX_OBSERVATION_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... (truncated)"
