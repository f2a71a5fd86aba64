from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from terminusai.shell import BashAdapter, CmdAdapter, PowerShellAdapter, create_shell_adapter
from terminusai.shell.base import CommandResult, normalize_output


@pytest.mark.parametrize(
    ("factory_input", "expected_type"),
    [
        ("powershell", PowerShellAdapter),
        ("pwsh", PowerShellAdapter),
        ("bash", BashAdapter),
        ("sh", BashAdapter),
        ("cmd", CmdAdapter),
    ],
)
def test_create_shell_adapter(factory_input: str, expected_type: type[object]) -> None:
    adapter = create_shell_adapter(factory_input)
    assert isinstance(adapter, expected_type)


def test_create_shell_adapter_invalid() -> None:
    with pytest.raises(ValueError, match="Unsupported shell adapter"):
        create_shell_adapter("zsh")


@pytest.mark.parametrize(
    ("adapter", "expected"),
    [
        (BashAdapter(executable="bash"), ["bash", "-c", "ls -la"]),
        (CmdAdapter(), ["cmd.exe", "/d", "/s", "/c", "ls -la"]),
        (
            PowerShellAdapter(executable="pwsh"),
            ["pwsh", "-NoProfile", "-NonInteractive", "-Command", "ls -la"],
        ),
    ],
)
def test_build_argv(adapter: object, expected: list[str]) -> None:
    assert adapter.build_argv("ls -la") == expected  # type: ignore[attr-defined]


def test_powershell_adapter_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=1, output=b"", stderr=b"late")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = PowerShellAdapter(executable="pwsh").execute("Write-Output hi", timeout=1)
    assert result.timed_out is True
    assert result.returncode == 124
    assert result.stderr == "late"


def test_powershell_adapter_command_formatting(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        assert args[0] == [
            "pwsh",
            "-NoProfile",
            "-NonInteractive",
            "-Command",
            "Write-Output hi",
        ]
        assert kwargs["cwd"] == "C:/repo"
        return SimpleNamespace(returncode=0, stdout=b"hi", stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = PowerShellAdapter(executable="pwsh").execute("Write-Output hi", cwd="C:/repo")
    assert result.returncode == 0
    assert result.stdout == "hi"


def test_adapter_missing_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = PowerShellAdapter(executable="C:/missing/pwsh.exe").execute("Write-Output hi")
    assert result.returncode == 127
    assert result.executed is False
    assert "executable not found" in result.stderr


def test_adapter_missing_working_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise FileNotFoundError(kwargs["cwd"])

    monkeypatch.setattr(subprocess, "run", fake_run)
    missing = tmp_path / "nope"
    result = BashAdapter(executable="bash").execute("ls", cwd=str(missing))
    assert result.returncode == 127
    assert "working directory does not exist" in result.stderr


def test_bash_adapter_runs_command(tmp_path: Path) -> None:
    adapter = BashAdapter()
    if adapter.executable not in {"bash", "sh"}:
        pytest.skip("no POSIX shell available")
    try:
        result = adapter.execute("echo hello", cwd=str(tmp_path))
    except OSError:
        pytest.skip("no POSIX shell available")
    if not result.executed:
        pytest.skip("no POSIX shell available")
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_command_result_combined_output() -> None:
    result = CommandResult(command="x", shell="bash", returncode=1, stdout="out", stderr="err")
    assert result.combined_output == "out\nerr"
    assert CommandResult("x", "bash", 0, "", "only err").combined_output == "only err"


def test_sanitize_command_masks_secrets() -> None:
    adapter = BashAdapter(executable="bash")
    assert adapter._sanitize_command("deploy --token abc123") == "deploy --token ***"
    assert adapter._sanitize_command("API_KEY=xyz run") == "API_KEY=*** run"


def test_normalize_output_handles_none_and_bytes() -> None:
    assert normalize_output(None) == ""
    assert normalize_output("text") == "text"
    assert normalize_output("héllo".encode()) == "héllo"
