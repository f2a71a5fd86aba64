"""Action handlers and the dispatcher that routes actions to them."""

from pathlib import Path

from terminusai.policy.store import PolicyStore
from terminusai.shell import create_shell_adapter

from .base import ActionDispatcher, Handler
from .commands import CommandHandlers, ShellFactory
from .files import FileHandlers


def create_default_dispatcher(
    *,
    policy: PolicyStore,
    working_directory: str | Path,
    command_timeout: float | None = None,
    shell_factory: ShellFactory = create_shell_adapter,
) -> ActionDispatcher:
    files = FileHandlers(working_directory=working_directory, policy=policy)
    commands = CommandHandlers(
        working_directory=working_directory,
        policy=policy,
        command_timeout=command_timeout,
        shell_factory=shell_factory,
    )
    return ActionDispatcher(
        {
            "list_files": files.list_files,
            "read_file": files.read_file,
            "search_files": files.search_files,
            "write_file": files.write_file,
            "stat_path": files.stat_path,
            "make_dir": files.make_dir,
            "delete_path": files.delete_path,
            "copy_path": files.copy_path,
            "move_path": files.move_path,
            "hash_file": files.hash_file,
            "shell": commands.shell,
            "time_now": commands.time_now,
            "whoami": commands.whoami,
        }
    )


__all__ = [
    "ActionDispatcher",
    "CommandHandlers",
    "FileHandlers",
    "Handler",
    "create_default_dispatcher",
]
