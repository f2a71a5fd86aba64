"""Command-line interface for terminusai."""

from __future__ import annotations

import argparse
import logging
import os
import platform
from collections.abc import Sequence
from functools import partial
from pathlib import Path
from typing import cast

from .agent.loop import AgentLoop, RetryPolicy
from .agent.models import Action, TaskOutcome
from .config import AppConfig
from .handlers import create_default_dispatcher
from .llm.client import LLMClient, ProviderError
from .policy.store import ApprovalError, Decision, PolicyError, PolicyStore

LOGGER = logging.getLogger(__name__)

APPROVAL_CHOICES = {
    "1": Decision.ONCE,
    "once": Decision.ONCE,
    "2": Decision.ALWAYS,
    "always": Decision.ALWAYS,
    "3": Decision.NEVER,
    "never": Decision.NEVER,
    "4": Decision.SKIP,
    "skip": Decision.SKIP,
}


class CLIArgs(argparse.Namespace):
    task: str | None
    working_directory: str | None
    always_allow: bool
    verbose: bool


def build_runtime_context(shell_name: str, working_directory: str | None) -> str:
    """Build startup orientation context for the model."""
    effective_cwd = working_directory or str(Path.cwd())
    return "\n".join(
        [
            f"OS: {platform.system()} {platform.release()}",
            f"Architecture: {platform.machine()}",
            f"Default shell: {shell_name}",
            f"Working directory: {effective_cwd}",
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="terminusai",
        description="Terminal agent that runs model-proposed actions after approval",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Override the working directory actions run in. "
            "Takes precedence over config/env cwd values."
        ),
    )
    parser.add_argument(
        "-y",
        "--yes",
        dest="always_allow",
        action="store_true",
        help="Approve every command without prompting",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log provider calls, approvals and command execution",
    )
    parser.add_argument("task", nargs="?", help="Task for the agent to carry out")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    config = AppConfig.from_env()

    task = args.task or input("Task: ").strip()
    if not task:
        print("No task provided.")
        return 1

    configured_working_directory = (
        args.working_directory if args.working_directory is not None else config.working_directory
    )
    working_directory: str | None = None
    if configured_working_directory is not None:
        resolved_working_directory = Path(configured_working_directory).expanduser().resolve()
        if not resolved_working_directory.exists() or not resolved_working_directory.is_dir():
            print(f"Invalid configured cwd directory: {configured_working_directory}")
            return 1
        working_directory = str(resolved_working_directory)
    effective_working_directory = working_directory or os.getcwd()

    try:
        policy = PolicyStore.load(
            config.policy_file,
            prompt=partial(prompt_approval, working_directory=effective_working_directory),
        )
    except (PolicyError, OSError) as exc:
        print(f"Could not load approval policy: {exc}")
        return 1
    if args.always_allow or config.always_allow:
        policy.set_always_allow(True)

    client = LLMClient(
        api_key=config.api_key,
        model=config.model,
        api_url=config.api_url,
        timeout=config.request_timeout,
    )
    dispatcher = create_default_dispatcher(
        policy=policy,
        working_directory=effective_working_directory,
        command_timeout=config.command_timeout,
    )
    loop = AgentLoop(
        provider=client,
        dispatcher=dispatcher,
        system_prompt=config.system_prompt,
        log_dir=config.log_dir,
        max_iterations=config.max_iterations,
        retry_policy=RetryPolicy(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
        ),
        default_shell=config.shell,
        runtime_context=build_runtime_context(config.shell, working_directory),
        on_observation=_print_observation,
    )

    try:
        outcome = loop.run(task)
    except ProviderError as exc:
        print(f"Failed to get response from provider: {exc}")
        return 1
    except ApprovalError as exc:
        print(f"Failed to get approval: {exc}")
        return 1
    finally:
        _save_policy(policy)

    print(_render_outcome(outcome))
    return 0


def prompt_approval(
    command: str, description: str, *, working_directory: str | None = None
) -> Decision:
    """Ask the user how to treat a command that no rule covers."""
    print("\n=== COMMAND APPROVAL REQUIRED ===")
    if description and description != "Execute command":
        print(f"Purpose: {description}")
    print(f"Command: {command}")
    print(f"Working directory: {working_directory or Path.cwd()}")
    print("=================================")
    print("  [1] Allow once")
    print("  [2] Always allow (persist rule)")
    print("  [3] Never allow (persist rule)")
    print("  [4] Skip this command")
    while True:
        choice = input("Choose action [1-4]: ").strip().lower()
        decision = APPROVAL_CHOICES.get(choice)
        if decision is not None:
            return decision
        print("Please enter 1, 2, 3 or 4.")


def _save_policy(policy: PolicyStore) -> None:
    try:
        policy.save()
    except OSError as exc:
        LOGGER.error("policy_save_failed", extra={"path": str(policy.path), "error": str(exc)})
        print(f"Could not save approval policy: {exc}")


def _print_observation(iteration: int, action: Action, observation: str) -> None:
    first_line = observation.splitlines()[0] if observation else ""
    print(f"[{iteration}] {action.type}: {first_line[:120]}")


def _render_outcome(outcome: TaskOutcome) -> str:
    if outcome.status == "done":
        return f"✓ {outcome.result}"
    return f"● Max iterations reached\n{outcome.result}"


if __name__ == "__main__":
    raise SystemExit(main())
