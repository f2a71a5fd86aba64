"""Turn unreliable model text into a validated action.

Parsing happens in three stages:

1. :mod:`terminusai.agent.extract` yields JSON objects found in the raw text.
2. Each object runs through :data:`NORMALIZATION_RULES`, an ordered tuple of
   pure functions over a plain key-value view that remap legacy type names and
   infer a missing ``type`` from the fields that are present.
3. The normalized mapping is validated per type, defaults are applied and a
   typed action is built. A validation failure only rejects that candidate.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from terminusai.agent.extract import DEFAULT_MAX_BRACE_CANDIDATES, iter_objects
from terminusai.agent.models import (
    Action,
    DoneAction,
    ExtensionAction,
    ListFilesAction,
    ReadFileAction,
    SearchFilesAction,
    ShellAction,
)
from terminusai.config import SHELL_KINDS, default_shell_for_platform

LOGGER = logging.getLogger(__name__)

Fields = dict[str, object]
NormalizationRule = Callable[[Mapping[str, object]], Fields]

TYPE_ALIASES = {
    "list-files": "list_files",
    "get-file": "read_file",
    "run-command": "shell",
}

MAX_LIST_DEPTH = 3
MIN_READ_BYTES = 1
MAX_READ_BYTES = 200_000
DEFAULT_READ_BYTES = 4000
DEFAULT_MAX_RESULTS = 50

_TRAILING_EXTENSION = re.compile(r"\.[a-zA-Z0-9]+$")
_INNER_DOT = re.compile(r"[^\\/]\.[^\\/]")


class ValidationError(ValueError):
    """Raised when a normalized candidate is missing or has invalid fields."""


class ParseError(ValueError):
    """Raised when no candidate in the model output is a valid action."""

    def __init__(self, message: str, rejections: list[str] | None = None) -> None:
        super().__init__(message)
        self.rejections = rejections or []


# Normalization rules


def remap_alias(fields: Mapping[str, object]) -> Fields:
    """Map legacy or alternate type names onto the canonical ones."""
    result = dict(fields)
    type_value = fields.get("type")
    if not isinstance(type_value, str):
        return result

    normalized = type_value.lower()
    if normalized in TYPE_ALIASES:
        result["type"] = TYPE_ALIASES[normalized]
    elif normalized == "result":
        result["type"] = "done"
        if "text" in fields:
            result["result"] = fields["text"]
        else:
            result["result"] = fields.get("result", "")
    return result


def infer_shell_from_command(fields: Mapping[str, object]) -> Fields:
    result = dict(fields)
    if "type" not in fields and fields.get("command") is not None:
        result["type"] = "shell"
    return result


def infer_done_from_result(fields: Mapping[str, object]) -> Fields:
    result = dict(fields)
    if "type" not in fields and fields.get("result") is not None:
        result["type"] = "done"
    return result


def infer_path_action(fields: Mapping[str, object]) -> Fields:
    """Pick ``read_file`` for file-like paths and ``list_files`` otherwise."""
    result = dict(fields)
    path = fields.get("path")
    if "type" in fields or not isinstance(path, str):
        return result

    if looks_like_file(path) or fields.get("maxBytes") is not None:
        result["type"] = "read_file"
    else:
        result["type"] = "list_files"
        result.setdefault("depth", 0)
    return result


def looks_like_file(path: str) -> bool:
    if _TRAILING_EXTENSION.search(path):
        return True
    return path != "." and _INNER_DOT.search(path) is not None


NORMALIZATION_RULES: tuple[NormalizationRule, ...] = (
    remap_alias,
    infer_shell_from_command,
    infer_done_from_result,
    infer_path_action,
)


def normalize(fields: Mapping[str, object]) -> Fields:
    normalized = dict(fields)
    for rule in NORMALIZATION_RULES:
        normalized = rule(normalized)
    return normalized


# Field readers. ``None`` and a missing key are treated the same way.


def _optional_str(fields: Mapping[str, object], key: str) -> str | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _optional_int(fields: Mapping[str, object], key: str) -> int | None:
    value = fields.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationError(f"{key} must be an integer")


def _optional_bool(fields: Mapping[str, object], key: str) -> bool | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _optional_str_list(fields: Mapping[str, object], key: str) -> list[str] | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"{key} must be a list of strings")
    return list(value)


def _required_str(fields: Mapping[str, object], key: str, action_type: str) -> str:
    value = _optional_str(fields, key)
    if not value:
        raise ValidationError(f"{key} is required for {action_type}")
    return value


# Core validators


def _validate_list_files(fields: Mapping[str, object], default_shell: str) -> Action:
    depth = _optional_int(fields, "depth")
    if depth is None:
        depth = 0
    elif depth < 0 or depth > MAX_LIST_DEPTH:
        raise ValidationError(f"depth must be between 0 and {MAX_LIST_DEPTH}")
    return ListFilesAction(path=_optional_str(fields, "path") or ".", depth=depth)


def _validate_read_file(fields: Mapping[str, object], default_shell: str) -> Action:
    path = _required_str(fields, "path", "read_file")
    max_bytes = _optional_int(fields, "maxBytes")
    if max_bytes is None:
        max_bytes = DEFAULT_READ_BYTES
    elif max_bytes < MIN_READ_BYTES or max_bytes > MAX_READ_BYTES:
        raise ValidationError(f"maxBytes must be between {MIN_READ_BYTES} and {MAX_READ_BYTES}")
    return ReadFileAction(path=path, max_bytes=max_bytes)


def _validate_shell(fields: Mapping[str, object], default_shell: str) -> Action:
    command = _required_str(fields, "command", "shell")
    shell = _optional_str(fields, "shell") or default_shell
    if shell not in SHELL_KINDS:
        raise ValidationError(f"shell must be one of: {', '.join(SHELL_KINDS)}")
    return ShellAction(
        command=command,
        shell=shell,
        cwd=_optional_str(fields, "cwd") or None,
        reason=_optional_str(fields, "reason") or None,
    )


def _validate_search_files(fields: Mapping[str, object], default_shell: str) -> Action:
    pattern = _required_str(fields, "pattern", "search_files")
    max_results = _optional_int(fields, "maxResults")
    case_sensitive = _optional_bool(fields, "caseSensitive")
    return SearchFilesAction(
        pattern=pattern,
        path=_optional_str(fields, "path") or ".",
        file_types=_optional_str_list(fields, "fileTypes") or [],
        case_sensitive=False if case_sensitive is None else case_sensitive,
        max_results=DEFAULT_MAX_RESULTS if max_results is None else max_results,
    )


def _validate_done(fields: Mapping[str, object], default_shell: str) -> Action:
    return DoneAction(result=_optional_str(fields, "result") or "")


CoreValidator = Callable[[Mapping[str, object], str], Action]

CORE_VALIDATORS: dict[str, CoreValidator] = {
    "list_files": _validate_list_files,
    "read_file": _validate_read_file,
    "shell": _validate_shell,
    "search_files": _validate_search_files,
    "done": _validate_done,
}


# Extension actions are validated from a declarative table.


@dataclass(frozen=True, slots=True)
class ExtensionSchema:
    """Required fields (with their kind) and defaults for one extension type."""

    required: tuple[tuple[str, str], ...] = ()
    defaults: Mapping[str, object] = field(default_factory=dict)


EXTENSION_SCHEMAS: dict[str, ExtensionSchema] = {
    "write_file": ExtensionSchema(
        required=(("path", "str"), ("content", "str")), defaults={"append": False}
    ),
    "ps": ExtensionSchema(),
    "kill": ExtensionSchema(required=(("processId", "int"),)),
    "http_request": ExtensionSchema(required=(("url", "str"),), defaults={"method": "GET"}),
    "ping": ExtensionSchema(required=(("host", "str"),)),
    "traceroute": ExtensionSchema(required=(("host", "str"),)),
    "get_system_info": ExtensionSchema(),
    "install_package": ExtensionSchema(required=(("name", "str"), ("manager", "str"))),
    "git": ExtensionSchema(required=(("command", "str"),)),
    "extract": ExtensionSchema(required=(("archivePath", "str"), ("dest", "str"))),
    "compress": ExtensionSchema(required=(("files", "list"), ("dest", "str"))),
    "parse_json": ExtensionSchema(required=(("path", "str"),)),
    "parse_yaml": ExtensionSchema(required=(("path", "str"),)),
    "ask_user": ExtensionSchema(required=(("question", "str"),)),
    "log": ExtensionSchema(required=(("message", "str"),), defaults={"level": "info"}),
    "copy_path": ExtensionSchema(
        required=(("src", "str"), ("dest", "str")), defaults={"overwrite": False}
    ),
    "move_path": ExtensionSchema(
        required=(("src", "str"), ("dest", "str")), defaults={"overwrite": False}
    ),
    "delete_path": ExtensionSchema(required=(("path", "str"),), defaults={"recursive": False}),
    "stat_path": ExtensionSchema(required=(("path", "str"),)),
    "make_dir": ExtensionSchema(required=(("path", "str"),), defaults={"parents": False}),
    "patch_file": ExtensionSchema(
        required=(("path", "str"), ("patch", "str")), defaults={"format": "unified"}
    ),
    "download_file": ExtensionSchema(required=(("url", "str"), ("dest", "str"))),
    "grep": ExtensionSchema(
        required=(("pattern", "str"),),
        defaults={"path": ".", "regex": False, "caseSensitive": False, "maxResults": 50},
    ),
    "diff": ExtensionSchema(
        required=(("aPath", "str"), ("bPath", "str")),
        defaults={"context": 3, "format": "unified"},
    ),
    "parse": ExtensionSchema(required=(("path", "str"), ("parseType", "str"))),
    "confirm": ExtensionSchema(required=(("action", "str"),)),
    "report": ExtensionSchema(required=(("result", "str"),)),
    "uuid": ExtensionSchema(defaults={"v": 4}),
    "time_now": ExtensionSchema(),
    "hash_file": ExtensionSchema(required=(("path", "str"),), defaults={"algo": "sha256"}),
    "checksum_verify": ExtensionSchema(
        required=(("path", "str"), ("checksum", "str")), defaults={"algo": "sha256"}
    ),
    "hexdump": ExtensionSchema(
        required=(("path", "str"),), defaults={"maxBytes": 1024, "offset": 0}
    ),
    "env_get": ExtensionSchema(),
    "env_set": ExtensionSchema(
        required=(("key", "str"), ("value", "str")), defaults={"persist": False}
    ),
    "whoami": ExtensionSchema(),
}


def _check_required(fields: Mapping[str, object], key: str, kind: str, action_type: str) -> None:
    if kind == "str":
        _required_str(fields, key, action_type)
    elif kind == "int":
        if _optional_int(fields, key) is None:
            raise ValidationError(f"{key} is required for {action_type}")
    elif kind == "list":
        value = fields.get(key)
        if not isinstance(value, list) or not value:
            raise ValidationError(f"{key} is required for {action_type}")


def _apply_default(fields: Fields, key: str, default: object) -> None:
    if isinstance(default, bool):
        value: object = _optional_bool(fields, key)
    elif isinstance(default, int):
        value = _optional_int(fields, key)
    else:
        value = _optional_str(fields, key) or None
    fields[key] = default if value is None else value


def _validate_extension(action_type: str, fields: Mapping[str, object]) -> Action:
    schema = EXTENSION_SCHEMAS[action_type]
    validated = {key: value for key, value in fields.items() if key != "type"}
    for key, kind in schema.required:
        _check_required(validated, key, kind, action_type)
    for key, default in schema.defaults.items():
        _apply_default(validated, key, default)
    return ExtensionAction(type=action_type, fields=validated)


def validate(fields: Mapping[str, object], *, default_shell: str | None = None) -> Action:
    """Validate a normalized mapping and build the typed action it describes."""
    action_type = fields.get("type")
    if not isinstance(action_type, str):
        raise ValidationError("type must be a string")

    shell = default_shell or default_shell_for_platform()
    core_validator = CORE_VALIDATORS.get(action_type)
    if core_validator is not None:
        return core_validator(fields, shell)
    if action_type in EXTENSION_SCHEMAS:
        return _validate_extension(action_type, fields)
    raise ValidationError(f"unknown action type: {action_type}")


def parse_action(
    raw: str,
    *,
    default_shell: str | None = None,
    max_brace_candidates: int = DEFAULT_MAX_BRACE_CANDIDATES,
) -> Action:
    """Return the first candidate in ``raw`` that normalizes into a valid action."""
    rejections: list[str] = []
    for candidate in iter_objects(raw, max_brace_candidates=max_brace_candidates):
        try:
            return validate(normalize(candidate), default_shell=default_shell)
        except ValidationError as exc:
            rejections.append(str(exc))

    LOGGER.debug(
        "action_parse_failed",
        extra={"raw_length": len(raw), "rejections": rejections[-5:]},
    )
    raise ParseError("no valid action found", rejections)
