"""Command execution and system information handlers."""

from __future__ import annotations

import getpass
import os
import platform
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from terminusai.agent.models import ExtensionAction, ShellAction
from terminusai.policy.store import PolicyStore
from terminusai.shell import ShellAdapter, create_shell_adapter

from .base import SKIPPED_OBSERVATION, resolve_path, truncate

ShellFactory = Callable[[str], ShellAdapter]


class CommandHandlers:
    """Runs approved shell commands and answers simple system queries."""

    def __init__(
        self,
        *,
        working_directory: str | Path,
        policy: PolicyStore,
        command_timeout: float | None = None,
        shell_factory: ShellFactory = create_shell_adapter,
    ) -> None:
        self.working_directory = Path(working_directory)
        self.policy = policy
        self.command_timeout = command_timeout
        self.shell_factory = shell_factory

    def shell(self, action: ShellAction) -> str:
        reason = action.reason or "Execute command"
        decision = self.policy.approve(action.command, reason)
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION

        cwd = self.working_directory
        if action.cwd:
            cwd = resolve_path(self.working_directory, action.cwd)
        adapter = self.shell_factory(action.shell)
        result = adapter.execute(action.command, cwd=str(cwd), timeout=self.command_timeout)
        output = truncate(result.combined_output)
        if result.timed_out:
            return f"error exit={result.returncode} (timed out)\n{output}"
        if result.returncode != 0:
            return f"error exit={result.returncode}\n{output}"
        return f"exit=0\n{output}"

    def time_now(self, action: ExtensionAction) -> str:
        tz_name = action.get("tz")
        if isinstance(tz_name, str) and tz_name:
            try:
                zone = ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                return f"error\nunknown time zone: {tz_name}"
            return datetime.now(zone).isoformat()
        return datetime.now(timezone.utc).isoformat()

    def whoami(self, action: ExtensionAction) -> str:
        try:
            user = getpass.getuser()
        except (OSError, KeyError):
            user = "unknown"
        return "\n".join(
            [
                f"user: {user}",
                f"home: {Path.home()}",
                f"host: {platform.node()}",
                f"os: {platform.system()} {platform.release()}",
                f"cwd: {self.working_directory}",
                f"pid: {os.getpid()}",
            ]
        )
