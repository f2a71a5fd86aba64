"""Conversation loop that drives the model until the task is done."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import TypeVar

from terminusai.agent.models import Action, ChatMessage, DoneAction, TaskOutcome
from terminusai.agent.parser import ParseError, parse_action
from terminusai.handlers import ActionDispatcher
from terminusai.llm.client import Provider, ProviderError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
ObservationCallback = Callable[[int, Action, str], None]

DEFAULT_MAX_ITERATIONS = 12
COMPACTION_THRESHOLD = 10
COMPACTION_KEEP_RECENT = 6
RAW_FEEDBACK_CHARS = 200
DEFAULT_DONE_RESULT = "Task completed successfully"

RETRYABLE_ERROR_MARKERS = ("overloaded", "timeout", "rate limit", "502", "503", "504")


def is_retryable(error: BaseException) -> bool:
    """Prefer the provider's own verdict, falling back to the error text."""
    flagged = getattr(error, "retryable", None)
    if isinstance(flagged, bool):
        return flagged
    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_ERROR_MARKERS)


@dataclass(slots=True)
class RetryState:
    attempt: int = 0
    last_error: BaseException | None = None
    delay: float = 0.0


@dataclass(slots=True)
class RetryPolicy:
    """Retries transient provider errors with a linearly growing blocking sleep."""

    max_retries: int = 3
    base_delay: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    def call(self, operation: Callable[[], T]) -> T:
        state = RetryState()
        while True:
            state.attempt += 1
            try:
                return operation()
            except ProviderError as exc:
                state.last_error = exc
                if not is_retryable(exc) or state.attempt > self.max_retries:
                    LOGGER.error(
                        "provider_call_failed",
                        extra={"attempt": state.attempt, "error": str(exc)},
                    )
                    raise
                state.delay = self.delay_for(state.attempt)
                LOGGER.warning(
                    "provider_call_retrying",
                    extra={
                        "attempt": state.attempt,
                        "max_retries": self.max_retries,
                        "delay_seconds": state.delay,
                        "error": str(exc),
                    },
                )
                self.sleep(state.delay)


def compact_transcript(
    transcript: Sequence[ChatMessage],
    *,
    threshold: int = COMPACTION_THRESHOLD,
    keep_recent: int = COMPACTION_KEEP_RECENT,
) -> list[ChatMessage]:
    """Keep the system prompt, the task and the most recent messages.

    Transcripts at or below ``threshold`` messages are returned unchanged.
    """
    if len(transcript) <= threshold:
        return list(transcript)
    return [transcript[0], transcript[1], *transcript[-keep_recent:]]


def format_parse_feedback(error: ParseError, raw: str) -> str:
    return (
        f"Invalid action format. Error: {error}. "
        f"Raw response: {raw[:RAW_FEEDBACK_CHARS]}. "
        "Please return a single JSON action."
    )


def format_observation(action_type: str, payload: str) -> str:
    return f"observation:{action_type}\n{payload}"


class AgentLoop:
    """Runs the call-parse-dispatch cycle for one task.

    Provider failures that are not retryable (or exhaust the retry budget) and
    approval failures raised by handlers propagate to the caller. Parse errors
    and unknown action types are fed back to the model and cost one iteration.
    """

    def __init__(
        self,
        *,
        provider: Provider,
        dispatcher: ActionDispatcher,
        system_prompt: str,
        log_dir: str | Path | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        retry_policy: RetryPolicy | None = None,
        default_shell: str | None = None,
        runtime_context: str | None = None,
        on_observation: ObservationCallback | None = None,
    ) -> None:
        self.provider = provider
        self.dispatcher = dispatcher
        self.system_prompt = system_prompt
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.max_iterations = max_iterations
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_shell = default_shell
        self.runtime_context = runtime_context
        self.on_observation = on_observation

    def initial_transcript(self, task: str) -> list[ChatMessage]:
        task_message = f"Task: {task}"
        if self.runtime_context:
            task_message = f"{task_message}\n{self.runtime_context}"
        return [
            ChatMessage(role="system", content=self.system_prompt),
            ChatMessage(role="user", content=task_message),
        ]

    def run(self, task: str) -> TaskOutcome:
        transcript = self.initial_transcript(task)

        for iteration in range(1, self.max_iterations + 1):
            transcript = compact_transcript(transcript)
            raw = self.retry_policy.call(partial(self.provider.chat, list(transcript)))

            try:
                action = parse_action(raw, default_shell=self.default_shell)
            except ParseError as exc:
                transcript.append(ChatMessage(role="user", content=format_parse_feedback(exc, raw)))
                self._append_log(task, iteration, event="parse_error", detail=str(exc))
                continue

            if isinstance(action, DoneAction):
                result = action.result or DEFAULT_DONE_RESULT
                self._append_log(task, iteration, event="done", action=action, detail=result)
                LOGGER.info("task_done", extra={"iterations": iteration})
                return TaskOutcome(
                    status="done",
                    result=result,
                    iterations=iteration,
                    transcript=transcript,
                )

            handler = self.dispatcher.get(action.type)
            if handler is None:
                message = f"Unknown action type: {action.type}"
                transcript.append(ChatMessage(role="user", content=message))
                self._append_log(task, iteration, event="unknown_action", action=action)
                continue

            observation = handler(action)
            transcript.append(
                ChatMessage(role="assistant", content=json.dumps(action.to_wire()))
            )
            transcript.append(
                ChatMessage(role="user", content=format_observation(action.type, observation))
            )
            self._append_log(task, iteration, event="action", action=action, detail=observation)
            if self.on_observation:
                self.on_observation(iteration, action, observation)

        summary = (
            f"Stopped after reaching the maximum of {self.max_iterations} iterations "
            "before the task was marked done."
        )
        LOGGER.warning("task_max_iterations", extra={"max_iterations": self.max_iterations})
        self._append_log(task, self.max_iterations, event="max_iterations", detail=summary)
        return TaskOutcome(
            status="max_iterations",
            result=summary,
            iterations=self.max_iterations,
            transcript=transcript,
        )

    def _append_log(
        self,
        task: str,
        iteration: int,
        *,
        event: str,
        action: Action | None = None,
        detail: str | None = None,
    ) -> None:
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        day_file = self.log_dir / f"session-{datetime.now(timezone.utc).date().isoformat()}.log"
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "task": task,
            "model": getattr(self.provider, "model", None),
            "iteration": iteration,
            "max_iterations": self.max_iterations,
            "event": event,
            "action": action.to_wire() if action is not None else None,
            "detail": detail,
        }
        with day_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")
