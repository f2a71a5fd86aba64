import json

import pytest

from terminusai.config import DEFAULT_SYSTEM_PROMPT, AppConfig, default_shell_for_platform

ENV_KEYS = [
    "TERMINUSAI_CONFIG_FILE",
    "TERMINUSAI_OPENAI_API_KEY",
    "TERMINUSAI_API_KEY",
    "TERMINUSAI_MODEL",
    "TERMINUSAI_API_URL",
    "TERMINUSAI_REQUEST_TIMEOUT",
    "TERMINUSAI_SYSTEM_PROMPT",
    "TERMINUSAI_SHELL",
    "TERMINUSAI_MAX_ITERATIONS",
    "TERMINUSAI_MAX_RETRIES",
    "TERMINUSAI_RETRY_BASE_DELAY",
    "TERMINUSAI_COMMAND_TIMEOUT",
    "TERMINUSAI_LOG_DIR",
    "TERMINUSAI_POLICY_FILE",
    "TERMINUSAI_ALWAYS_ALLOW",
    "TERMINUSAI_CWD",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # Keep any config file in the real working directory out of the way.
    monkeypatch.chdir(tmp_path)


def test_defaults_when_nothing_is_configured() -> None:
    config = AppConfig.from_env()

    assert config.api_key is None
    assert config.model == "gpt-4o-mini"
    assert config.api_url == "https://api.openai.com/v1/responses"
    assert config.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert config.shell == default_shell_for_platform()
    assert config.max_iterations == 12
    assert config.max_retries == 3
    assert config.retry_base_delay == 0.5
    assert config.command_timeout is None
    assert config.log_dir == "logs"
    assert config.policy_file.endswith("policy.json")
    assert config.always_allow is False
    assert config.working_directory is None


def test_app_config_loads_values_from_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "custom.json"
    config_path.write_text(
        json.dumps(
            {
                "openai": {
                    "api_key": "test-key",
                    "api_url": "https://example.test/v1/chat/completions",
                },
                "model": "gpt-4.1",
                "shell": "pwsh",
                "agent": {"max_iterations": 5, "retry_base_delay": 0.1, "command_timeout": 30},
                "log_dir": "test-logs",
                "policy_file": "rules.json",
                "always_allow": True,
                "cwd": "./sandbox",
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("TERMINUSAI_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.api_key == "test-key"
    assert config.api_url == "https://example.test/v1/chat/completions"
    assert config.model == "gpt-4.1"
    assert config.shell == "powershell"
    assert config.max_iterations == 5
    assert config.retry_base_delay == 0.1
    assert config.command_timeout == 30.0
    assert config.log_dir == "test-logs"
    assert config.policy_file == "rules.json"
    assert config.always_allow is True
    assert config.working_directory == "./sandbox"


def test_env_overrides_file_values(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "custom.json"
    config_path.write_text(
        json.dumps({"model": "from-file", "agent": {"max_iterations": 5}, "always_allow": True}),
        encoding="utf-8",
    )
    monkeypatch.setenv("TERMINUSAI_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("TERMINUSAI_MODEL", "from-env")
    monkeypatch.setenv("TERMINUSAI_MAX_ITERATIONS", "7")
    monkeypatch.setenv("TERMINUSAI_ALWAYS_ALLOW", "no")

    config = AppConfig.from_env()

    assert config.model == "from-env"
    assert config.max_iterations == 7
    assert config.always_allow is False


def test_local_config_overrides_shared_config(tmp_path) -> None:
    (tmp_path / "terminusai.config.json").write_text(
        json.dumps({"model": "shared", "agent": {"max_iterations": 4, "max_retries": 2}}),
        encoding="utf-8",
    )
    (tmp_path / "terminusai.config.local.json").write_text(
        json.dumps({"agent": {"max_iterations": 9}}),
        encoding="utf-8",
    )

    config = AppConfig.from_env()

    assert config.model == "shared"
    assert config.max_iterations == 9
    assert config.max_retries == 2


def test_invalid_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("TERMINUSAI_MAX_ITERATIONS", "-3")
    monkeypatch.setenv("TERMINUSAI_REQUEST_TIMEOUT", "soon")
    monkeypatch.setenv("TERMINUSAI_COMMAND_TIMEOUT", "0")

    config = AppConfig.from_env()

    assert config.max_iterations == 12
    assert config.request_timeout == 60.0
    assert config.command_timeout is None


def test_malformed_config_file_is_ignored(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "broken.json"
    config_path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("TERMINUSAI_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.model == "gpt-4o-mini"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("bash", "bash"), ("sh", "bash"), ("CMD", "cmd"), ("pwsh", "powershell")],
)
def test_shell_aliases(monkeypatch, value: str, expected: str) -> None:
    monkeypatch.setenv("TERMINUSAI_SHELL", value)

    assert AppConfig.from_env().shell == expected


def test_default_shell_for_platform() -> None:
    assert default_shell_for_platform("nt") == "powershell"
    assert default_shell_for_platform("posix") == "bash"
