"""Data models shared by the parser, the dispatcher and the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal, Union

Role = Literal["system", "user", "assistant"]
OutcomeStatus = Literal["done", "max_iterations"]


@dataclass(slots=True)
class ChatMessage:
    """One role-tagged entry of the transcript sent to the provider."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class ListFilesAction:
    type: ClassVar[str] = "list_files"

    path: str = "."
    depth: int = 0

    def to_wire(self) -> dict[str, object]:
        return {"type": self.type, "path": self.path, "depth": self.depth}


@dataclass(slots=True)
class ReadFileAction:
    type: ClassVar[str] = "read_file"

    path: str
    max_bytes: int = 4000

    def to_wire(self) -> dict[str, object]:
        return {"type": self.type, "path": self.path, "maxBytes": self.max_bytes}


@dataclass(slots=True)
class SearchFilesAction:
    type: ClassVar[str] = "search_files"

    pattern: str
    path: str = "."
    file_types: list[str] = field(default_factory=list)
    case_sensitive: bool = False
    max_results: int = 50

    def to_wire(self) -> dict[str, object]:
        wire: dict[str, object] = {
            "type": self.type,
            "pattern": self.pattern,
            "path": self.path,
            "caseSensitive": self.case_sensitive,
            "maxResults": self.max_results,
        }
        if self.file_types:
            wire["fileTypes"] = list(self.file_types)
        return wire


@dataclass(slots=True)
class ShellAction:
    type: ClassVar[str] = "shell"

    command: str
    shell: str
    cwd: str | None = None
    reason: str | None = None

    def to_wire(self) -> dict[str, object]:
        wire: dict[str, object] = {
            "type": self.type,
            "shell": self.shell,
            "command": self.command,
        }
        if self.cwd:
            wire["cwd"] = self.cwd
        if self.reason:
            wire["reason"] = self.reason
        return wire


@dataclass(slots=True)
class DoneAction:
    type: ClassVar[str] = "done"

    result: str = ""

    def to_wire(self) -> dict[str, object]:
        return {"type": self.type, "result": self.result}


@dataclass(slots=True)
class ExtensionAction:
    """Action whose fields are owned by a handler outside the core action set.

    ``fields`` holds the validated wire fields, with documented defaults
    already applied, keyed by their wire (camelCase) names.
    """

    type: str
    fields: dict[str, object] = field(default_factory=dict)

    def get(self, key: str, default: object = None) -> object:
        return self.fields.get(key, default)

    def to_wire(self) -> dict[str, object]:
        return {"type": self.type, **self.fields}


Action = Union[
    ListFilesAction,
    ReadFileAction,
    SearchFilesAction,
    ShellAction,
    DoneAction,
    ExtensionAction,
]


@dataclass(slots=True)
class TaskOutcome:
    """How a task ended when it did not abort with an error."""

    status: OutcomeStatus
    result: str
    iterations: int
    transcript: list[ChatMessage] = field(default_factory=list)
