"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_POLICY_FILE = str(Path.home() / ".terminusai" / "policy.json")

DEFAULT_SYSTEM_PROMPT = "\n".join(
    [
        (
            "You are a goal-oriented command-line agent. Your job is to achieve the"
            " user's task efficiently with minimal discovery."
        ),
        "",
        "Available tools (use EXACTLY one per response):",
        "- list_files { path: string, depth?: 0-3 } -> list directory contents",
        "- read_file { path: string, maxBytes?: number } -> read a text file",
        (
            "- search_files { pattern: string, path?: string, fileTypes?: [\"py\",\"js\"],"
            " caseSensitive?: boolean, maxResults?: number } -> regex search in files"
        ),
        (
            "- write_file { path: string, content: string, append?: boolean,"
            " reason?: string } -> write or append to a file (requires approval)"
        ),
        (
            "- shell { shell: \"powershell\"|\"bash\"|\"cmd\", command: string, cwd?: string,"
            " reason?: string } -> execute a command (requires approval)"
        ),
        "- stat_path { path: string } -> file or directory information",
        "- make_dir { path: string, parents?: boolean } -> create a directory (requires approval)",
        (
            "- delete_path { path: string, recursive?: boolean } -> delete a file or"
            " directory (requires approval)"
        ),
        (
            "- copy_path { src: string, dest: string, overwrite?: boolean } -> copy files"
            " or directories (requires approval)"
        ),
        (
            "- move_path { src: string, dest: string, overwrite?: boolean } -> move files"
            " or directories (requires approval)"
        ),
        "- hash_file { path: string, algo?: \"md5\"|\"sha1\"|\"sha256\"|\"sha512\" } -> hash a file",
        "- time_now {} -> current time",
        "- whoami {} -> current user information",
        "- done { result: string } -> finish the task with a summary",
        "",
        "Rules:",
        "1. Minimize discovery; only explore when the task requires it.",
        "2. Stay focused on the goal and move to action quickly.",
        "3. Prefer safe, reversible, and idempotent operations.",
        "",
        "Output format: return ONLY one valid JSON object matching one tool schema.",
        'Example: {"type":"shell","shell":"bash","command":"git init","reason":"Initialize repository"}',
    ]
)


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    api_key: str | None
    model: str
    api_url: str
    request_timeout: float
    system_prompt: str
    shell: str
    max_iterations: int
    max_retries: int
    retry_base_delay: float
    command_timeout: float | None
    log_dir: str
    policy_file: str
    always_allow: bool
    working_directory: str | None

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        openai_from_file = file_config.get("openai")
        openai_config = openai_from_file if isinstance(openai_from_file, dict) else {}
        agent_from_file = file_config.get("agent")
        agent_config = agent_from_file if isinstance(agent_from_file, dict) else {}

        return cls(
            api_key=(
                os.getenv("TERMINUSAI_OPENAI_API_KEY")
                or os.getenv("TERMINUSAI_API_KEY")
                or _to_optional_string(openai_config.get("api_key"))
                or _to_optional_string(file_config.get("api_key"))
            ),
            model=(
                os.getenv("TERMINUSAI_MODEL")
                or _to_optional_string(file_config.get("model"))
                or "gpt-4o-mini"
            ),
            api_url=(
                os.getenv("TERMINUSAI_API_URL")
                or _to_optional_string(openai_config.get("api_url"))
                or "https://api.openai.com/v1/responses"
            ),
            request_timeout=_to_positive_float(
                os.getenv("TERMINUSAI_REQUEST_TIMEOUT") or openai_config.get("timeout"),
                default=60.0,
            ),
            system_prompt=(
                os.getenv("TERMINUSAI_SYSTEM_PROMPT")
                or _to_optional_string(file_config.get("system_prompt"))
                or DEFAULT_SYSTEM_PROMPT
            ),
            shell=_resolve_shell(
                os.getenv("TERMINUSAI_SHELL") or _to_optional_string(file_config.get("shell"))
            ),
            max_iterations=_to_positive_int(
                os.getenv("TERMINUSAI_MAX_ITERATIONS") or agent_config.get("max_iterations"),
                default=12,
            ),
            max_retries=_to_positive_int(
                os.getenv("TERMINUSAI_MAX_RETRIES") or agent_config.get("max_retries"),
                default=3,
            ),
            retry_base_delay=_to_positive_float(
                os.getenv("TERMINUSAI_RETRY_BASE_DELAY") or agent_config.get("retry_base_delay"),
                default=0.5,
            ),
            command_timeout=_to_optional_positive_float(
                os.getenv("TERMINUSAI_COMMAND_TIMEOUT") or agent_config.get("command_timeout")
            ),
            log_dir=(
                os.getenv("TERMINUSAI_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            policy_file=(
                os.getenv("TERMINUSAI_POLICY_FILE")
                or _to_optional_string(file_config.get("policy_file"))
                or DEFAULT_POLICY_FILE
            ),
            always_allow=_to_bool(
                os.getenv("TERMINUSAI_ALWAYS_ALLOW"),
                default=bool(file_config.get("always_allow", False)),
            ),
            working_directory=(
                os.getenv("TERMINUSAI_CWD") or _to_optional_string(file_config.get("cwd"))
            ),
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("TERMINUSAI_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("terminusai.config.json")
    local_override = _load_file_config("terminusai.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


SHELL_KINDS = ("powershell", "bash", "cmd")


def _shell_value(value: str) -> str:
    normalized = value.strip().lower()
    aliases = {
        "cmd": "cmd",
        "powershell": "powershell",
        "pwsh": "powershell",
        "bash": "bash",
        "sh": "bash",
        "shell": "bash",
    }
    return aliases.get(normalized, default_shell_for_platform())


def default_shell_for_platform(os_name: str | None = None) -> str:
    """Return the shell kind used when neither the model nor the user picks one."""
    platform_name = os.name if os_name is None else os_name
    return "powershell" if platform_name == "nt" else "bash"


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return default_shell_for_platform()
    return _shell_value(value)


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    parsed = _to_optional_positive_float(value)
    return default if parsed is None else parsed


def _to_optional_positive_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None
