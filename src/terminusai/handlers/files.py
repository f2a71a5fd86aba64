"""Filesystem action handlers."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

from terminusai.agent.models import (
    ExtensionAction,
    ListFilesAction,
    ReadFileAction,
    SearchFilesAction,
)
from terminusai.policy.store import PolicyStore

from .base import SKIPPED_OBSERVATION, resolve_path, truncate

LOGGER = logging.getLogger(__name__)

MAX_LISTED_ENTRIES = 500
MAX_SEARCH_FILE_BYTES = 16 * 1024 * 1024
SKIPPED_SEARCH_DIRS = frozenset({"node_modules", ".git", ".venv", "__pycache__"})
HASH_ALGORITHMS = ("md5", "sha1", "sha256", "sha512")


class FileHandlers:
    """Handlers for actions that read or change files under a working directory."""

    def __init__(self, *, working_directory: str | Path, policy: PolicyStore) -> None:
        self.working_directory = Path(working_directory)
        self.policy = policy

    def _resolve(self, value: str) -> Path:
        return resolve_path(self.working_directory, value)

    def list_files(self, action: ListFilesAction) -> str:
        base = self._resolve(action.path)
        lines: list[str] = []
        try:
            _list_dir(base, action.depth, lines, base)
        except OSError as exc:
            lines.append(f"(error listing {base}: {exc})")
        return "\n".join(lines[:MAX_LISTED_ENTRIES])

    def read_file(self, action: ReadFileAction) -> str:
        target = self._resolve(action.path)
        try:
            content = target.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return f"{action.path} not found"
        except OSError as exc:
            return f"{action.path} error\n{exc}"
        return f"{action.path}\n{content[: action.max_bytes]}"

    def search_files(self, action: SearchFilesAction) -> str:
        flags = 0 if action.case_sensitive else re.IGNORECASE
        try:
            regex = re.compile(action.pattern, flags)
        except re.error as exc:
            return f"error\ninvalid regex pattern: {exc}"

        base = self._resolve(action.path)
        extensions = {f".{file_type.lstrip('.')}" for file_type in action.file_types}
        matches = _search(base, regex, extensions, action.max_results)
        lines = [f"Found {len(matches)} matches for pattern '{action.pattern}':"]
        lines.extend(f"{name}:{line_number}: {text.strip()}" for name, line_number, text in matches)
        return truncate("\n".join(lines))

    def write_file(self, action: ExtensionAction) -> str:
        path = str(action.get("path"))
        append = bool(action.get("append"))
        reason = action.get("reason")
        if not isinstance(reason, str) or not reason:
            verb = "Append content to" if append else "Write content to"
            reason = f"{verb} file {path}"

        decision = self.policy.approve(f"write_file {path}", reason)
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION

        target = self._resolve(path)
        content = str(action.get("content"))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("a" if append else "w", encoding="utf-8") as handle:
                handle.write(content)
        except OSError as exc:
            return f"error\n{exc}"
        return f"success\nContent {'appended' if append else 'written'} to {path}"

    def stat_path(self, action: ExtensionAction) -> str:
        path = str(action.get("path"))
        try:
            info = self._resolve(path).stat()
        except OSError as exc:
            return f"error\n{exc}"
        modified = datetime.fromtimestamp(info.st_mtime, tz=timezone.utc).isoformat()
        return "\n".join(
            [
                f"Name: {Path(path).name or path}",
                f"Size: {info.st_size} bytes",
                f"Mode: {oct(info.st_mode & 0o777)}",
                f"ModTime: {modified}",
                f"IsDir: {self._resolve(path).is_dir()}",
            ]
        )

    def make_dir(self, action: ExtensionAction) -> str:
        path = str(action.get("path"))
        parents = bool(action.get("parents"))
        decision = self.policy.approve(f"make_dir {path}", f"Create directory {path}")
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION
        try:
            self._resolve(path).mkdir(parents=parents, exist_ok=parents)
        except OSError as exc:
            return f"error\n{exc}"
        return f"success\nCreated directory {path}"

    def delete_path(self, action: ExtensionAction) -> str:
        path = str(action.get("path"))
        recursive = bool(action.get("recursive"))
        decision = self.policy.approve(f"delete {path}", f"Delete {path}")
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION

        target = self._resolve(path)
        try:
            if target.is_dir() and not target.is_symlink():
                if recursive:
                    shutil.rmtree(target)
                else:
                    target.rmdir()
            else:
                target.unlink()
        except OSError as exc:
            return f"error\n{exc}"
        return "success\nDelete completed successfully"

    def copy_path(self, action: ExtensionAction) -> str:
        src, dest = str(action.get("src")), str(action.get("dest"))
        decision = self.policy.approve(f"copy {src} {dest}", f"Copy {src} to {dest}")
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION

        source, destination = self._resolve(src), self._resolve(dest)
        if destination.exists() and not action.get("overwrite"):
            return "error\ndestination already exists and overwrite is false"
        try:
            if source.is_dir():
                shutil.copytree(source, destination, dirs_exist_ok=True)
            else:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
        except OSError as exc:
            return f"error\n{exc}"
        return "success\nCopy completed successfully"

    def move_path(self, action: ExtensionAction) -> str:
        src, dest = str(action.get("src")), str(action.get("dest"))
        decision = self.policy.approve(f"move {src} {dest}", f"Move {src} to {dest}")
        if not decision.allows_execution:
            return SKIPPED_OBSERVATION

        destination = self._resolve(dest)
        if destination.exists() and not action.get("overwrite"):
            return "error\ndestination already exists and overwrite is false"
        try:
            os.replace(self._resolve(src), destination)
        except OSError as exc:
            return f"error\n{exc}"
        return "success\nMove completed successfully"

    def hash_file(self, action: ExtensionAction) -> str:
        path = str(action.get("path"))
        algo = str(action.get("algo")).lower()
        if algo not in HASH_ALGORITHMS:
            return f"error\nunsupported hash algorithm: {algo}"

        digest = hashlib.new(algo)
        try:
            with self._resolve(path).open("rb") as handle:
                for chunk in iter(lambda: handle.read(65536), b""):
                    digest.update(chunk)
        except OSError as exc:
            return f"error\n{exc}"
        return f"{algo} {digest.hexdigest()}  {path}"


def _list_dir(path: Path, depth: int, lines: list[str], base: Path) -> None:
    if depth < 0:
        return
    for entry in sorted(path.iterdir(), key=lambda item: item.name):
        indent = "  " * (len(entry.relative_to(base).parts) - 1)
        if entry.is_dir():
            lines.append(f"{indent}{entry.name}/")
            if depth > 0:
                try:
                    _list_dir(entry, depth - 1, lines, base)
                except OSError:
                    lines.append(f"{indent}  (error reading directory)")
        else:
            lines.append(f"{indent}{entry.name}")


def _search(
    base: Path,
    regex: re.Pattern[str],
    extensions: set[str],
    max_results: int,
) -> list[tuple[str, int, str]]:
    matches: list[tuple[str, int, str]] = []
    if max_results <= 0:
        return matches
    if base.is_file():
        candidates = [(base.parent, base)]
    else:
        candidates = _walk_files(base)

    for root, file_path in candidates:
        if extensions and file_path.suffix not in extensions:
            continue
        try:
            if file_path.stat().st_size > MAX_SEARCH_FILE_BYTES:
                continue
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        for line_number, line in enumerate(text.splitlines(), start=1):
            if regex.search(line):
                matches.append((file_path.relative_to(root).as_posix(), line_number, line))
                if len(matches) >= max_results:
                    LOGGER.debug("search_max_results_reached", extra={"max_results": max_results})
                    return matches
    return matches


def _walk_files(base: Path) -> list[tuple[Path, Path]]:
    found: list[tuple[Path, Path]] = []
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(name for name in dirs if name not in SKIPPED_SEARCH_DIRS)
        for name in sorted(files):
            found.append((base, Path(root) / name))
    return found
