from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from terminusai.agent.models import (
    ExtensionAction,
    ListFilesAction,
    ReadFileAction,
    SearchFilesAction,
    ShellAction,
)
from terminusai.handlers import ActionDispatcher, create_default_dispatcher
from terminusai.handlers.base import SKIPPED_OBSERVATION, truncate
from terminusai.policy.store import ApprovalError, Decision, PolicyStore, Rule
from terminusai.shell.base import CommandResult


class FakeShell:
    name = "fake"

    def __init__(self, result: CommandResult | None = None) -> None:
        self.result = result
        self.calls: list[tuple[str, str | None, float | None]] = []

    def execute(
        self, command: str, *, cwd: str | None = None, timeout: float | None = None
    ) -> CommandResult:
        self.calls.append((command, cwd, timeout))
        return self.result or CommandResult(
            command=command, shell=self.name, returncode=0, stdout="ok\n", stderr=""
        )


def _dispatcher(
    tmp_path: Path, policy: PolicyStore | None = None, shell: FakeShell | None = None
) -> ActionDispatcher:
    fake = shell or FakeShell()
    return create_default_dispatcher(
        policy=policy or PolicyStore(always_allow=True),
        working_directory=tmp_path,
        command_timeout=5.0,
        shell_factory=lambda _name: fake,
    )


def _run(dispatcher: ActionDispatcher, action: object) -> str:
    handler = dispatcher.get(action.type)  # type: ignore[attr-defined]
    assert handler is not None
    return handler(action)


def test_dispatcher_registry() -> None:
    dispatcher = ActionDispatcher()
    dispatcher.register("ping", lambda _action: "pong")

    assert dispatcher.types == ["ping"]
    assert dispatcher.get("ping")(None) == "pong"  # type: ignore[misc]
    assert dispatcher.get("missing") is None


def test_default_dispatcher_types(tmp_path: Path) -> None:
    assert "shell" in _dispatcher(tmp_path).types
    assert "done" not in _dispatcher(tmp_path).types


def test_list_files_tree(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("", encoding="utf-8")
    (tmp_path / "README.md").write_text("", encoding="utf-8")
    dispatcher = _dispatcher(tmp_path)

    assert _run(dispatcher, ListFilesAction(path=".", depth=0)) == "README.md\nsrc/"
    assert _run(dispatcher, ListFilesAction(path=".", depth=1)) == "README.md\nsrc/\n  app.py"


def test_list_files_missing_directory(tmp_path: Path) -> None:
    observation = _run(_dispatcher(tmp_path), ListFilesAction(path="nope"))

    assert observation.startswith("(error listing")


def test_read_file(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("hello world", encoding="utf-8")
    dispatcher = _dispatcher(tmp_path)

    assert _run(dispatcher, ReadFileAction(path="notes.txt", max_bytes=5)) == "notes.txt\nhello"
    assert _run(dispatcher, ReadFileAction(path="absent.txt")) == "absent.txt not found"


def test_search_files(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("import os\n# TODO: fix\n", encoding="utf-8")
    (tmp_path / "b.txt").write_text("todo later\n", encoding="utf-8")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "c.py").write_text("TODO hidden\n", encoding="utf-8")
    dispatcher = _dispatcher(tmp_path)

    observation = _run(dispatcher, SearchFilesAction(pattern="todo"))
    assert observation.splitlines() == [
        "Found 2 matches for pattern 'todo':",
        "a.py:2: # TODO: fix",
        "b.txt:1: todo later",
    ]

    filtered = _run(
        dispatcher, SearchFilesAction(pattern="todo", file_types=["py"], case_sensitive=True)
    )
    assert filtered == "Found 0 matches for pattern 'todo':"


def test_search_files_invalid_regex(tmp_path: Path) -> None:
    observation = _run(_dispatcher(tmp_path), SearchFilesAction(pattern="("))

    assert observation.startswith("error\ninvalid regex pattern")


def test_write_file_requires_approval(tmp_path: Path) -> None:
    prompts: list[tuple[str, str]] = []

    def prompt(command: str, description: str) -> Decision:
        prompts.append((command, description))
        return Decision.ONCE

    dispatcher = _dispatcher(tmp_path, policy=PolicyStore(prompt=prompt))
    action = ExtensionAction("write_file", {"path": "out/a.txt", "content": "hi", "append": False})

    assert _run(dispatcher, action) == "success\nContent written to out/a.txt"
    assert (tmp_path / "out" / "a.txt").read_text(encoding="utf-8") == "hi"
    assert prompts == [("write_file out/a.txt", "Write content to file out/a.txt")]

    append = ExtensionAction("write_file", {"path": "out/a.txt", "content": "!", "append": True})
    assert _run(dispatcher, append) == "success\nContent appended to out/a.txt"
    assert (tmp_path / "out" / "a.txt").read_text(encoding="utf-8") == "hi!"


def test_declined_write_is_skipped(tmp_path: Path) -> None:
    policy = PolicyStore([Rule("write_file *", Decision.NEVER)])
    action = ExtensionAction("write_file", {"path": "a.txt", "content": "hi", "append": False})

    assert _run(_dispatcher(tmp_path, policy=policy), action) == SKIPPED_OBSERVATION
    assert not (tmp_path / "a.txt").exists()


def test_path_operations(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    (tmp_path / "a.txt").write_text("data", encoding="utf-8")

    made = _run(dispatcher, ExtensionAction("make_dir", {"path": "x/y", "parents": True}))
    assert made == "success\nCreated directory x/y"
    assert (tmp_path / "x" / "y").is_dir()

    copied = _run(dispatcher, ExtensionAction("copy_path", {"src": "a.txt", "dest": "b.txt"}))
    assert copied == "success\nCopy completed successfully"

    blocked = _run(
        dispatcher, ExtensionAction("move_path", {"src": "a.txt", "dest": "b.txt"})
    )
    assert blocked.startswith("error\ndestination already exists")

    moved = _run(
        dispatcher, ExtensionAction("move_path", {"src": "a.txt", "dest": "c.txt"})
    )
    assert moved == "success\nMove completed successfully"
    assert not (tmp_path / "a.txt").exists()

    stat = _run(dispatcher, ExtensionAction("stat_path", {"path": "c.txt"}))
    assert "Size: 4 bytes" in stat
    assert "IsDir: False" in stat

    deleted = _run(dispatcher, ExtensionAction("delete_path", {"path": "x", "recursive": True}))
    assert deleted == "success\nDelete completed successfully"
    assert not (tmp_path / "x").exists()


def test_hash_file(tmp_path: Path) -> None:
    (tmp_path / "a.bin").write_bytes(b"abc")
    dispatcher = _dispatcher(tmp_path)

    action = ExtensionAction("hash_file", {"path": "a.bin", "algo": "sha256"})
    observation = _run(dispatcher, action)

    assert observation == f"sha256 {hashlib.sha256(b'abc').hexdigest()}  a.bin"
    unsupported = _run(dispatcher, ExtensionAction("hash_file", {"path": "a.bin", "algo": "crc"}))
    assert unsupported == "error\nunsupported hash algorithm: crc"


def test_shell_runs_approved_command(tmp_path: Path) -> None:
    shell = FakeShell()
    dispatcher = _dispatcher(tmp_path, shell=shell)

    observation = _run(dispatcher, ShellAction(command="ls", shell="bash"))

    assert observation == "exit=0\nok\n"
    assert shell.calls == [("ls", str(tmp_path), 5.0)]


def test_shell_reports_failure_as_observation(tmp_path: Path) -> None:
    shell = FakeShell(CommandResult("false", "fake", 2, "", "boom"))
    dispatcher = _dispatcher(tmp_path, shell=shell)

    assert _run(dispatcher, ShellAction(command="false", shell="bash")) == "error exit=2\nboom"


def test_shell_reports_timeout(tmp_path: Path) -> None:
    shell = FakeShell(CommandResult("sleep 9", "fake", 124, "", "", timed_out=True))
    dispatcher = _dispatcher(tmp_path, shell=shell)

    observation = _run(dispatcher, ShellAction(command="sleep 9", shell="bash"))

    assert observation.startswith("error exit=124 (timed out)")


def test_shell_skipped_by_never_rule(tmp_path: Path) -> None:
    shell = FakeShell()
    policy = PolicyStore([Rule("rm *", Decision.NEVER)])
    dispatcher = _dispatcher(tmp_path, policy=policy, shell=shell)

    assert _run(dispatcher, ShellAction(command="rm -rf /", shell="bash")) == SKIPPED_OBSERVATION
    assert shell.calls == []


def test_shell_without_prompt_raises(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path, policy=PolicyStore())

    with pytest.raises(ApprovalError):
        _run(dispatcher, ShellAction(command="ls", shell="bash"))


def test_system_info_handlers(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)

    assert "T" in _run(dispatcher, ExtensionAction("time_now", {}))
    assert _run(dispatcher, ExtensionAction("time_now", {"tz": "Not/AZone"})).startswith("error")
    assert f"cwd: {tmp_path}" in _run(dispatcher, ExtensionAction("whoami", {}))


def test_truncate() -> None:
    assert truncate("abc", limit=5) == "abc"
    assert truncate("abcdef", limit=3) == "abc\n... (truncated)"
