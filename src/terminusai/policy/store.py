"""Persisted command approval rules and the interactive approval flow."""

from __future__ import annotations

import enum
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from terminusai.config import DEFAULT_POLICY_FILE

LOGGER = logging.getLogger(__name__)


class Decision(str, enum.Enum):
    ONCE = "once"
    ALWAYS = "always"
    NEVER = "never"
    SKIP = "skip"

    @property
    def allows_execution(self) -> bool:
        return self in {Decision.ONCE, Decision.ALWAYS}


ApprovalPrompt = Callable[[str, str], Decision]


class PolicyError(ValueError):
    """Raised when the persisted policy file cannot be understood."""


class ApprovalError(RuntimeError):
    """Raised when a human decision is required but cannot be collected."""


@dataclass(slots=True)
class Rule:
    """A command pattern (``*`` matches anything) and its cached decision."""

    pattern: str
    decision: Decision

    def to_dict(self) -> dict[str, str]:
        return {"pattern": self.pattern, "decision": self.decision.value}

    def matches(self, command: str) -> bool:
        return compile_pattern(self.pattern).fullmatch(command) is not None


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Escape every regex metacharacter except ``*``, which becomes ``.*``."""
    return re.compile(re.escape(pattern).replace(r"\*", ".*"))


class PolicyStore:
    """Ordered approval rules plus a global always-allow override.

    The store is loaded once per process, mutated in memory when the user picks
    "always" or "never", and written back only when :meth:`save` is called.
    Patterns are unique; a later rule with the same pattern replaces the earlier
    decision in place. It is not safe for concurrent mutation.
    """

    def __init__(
        self,
        rules: list[Rule] | None = None,
        *,
        path: str | Path = DEFAULT_POLICY_FILE,
        prompt: ApprovalPrompt | None = None,
        always_allow: bool = False,
    ) -> None:
        self._rules: list[Rule] = []
        for rule in rules or []:
            self.add(rule)
        self.path = Path(path)
        self.prompt = prompt
        self._always_allow = always_allow

    @classmethod
    def load(
        cls,
        path: str | Path | None = None,
        *,
        prompt: ApprovalPrompt | None = None,
    ) -> PolicyStore:
        policy_path = Path(path) if path is not None else Path(DEFAULT_POLICY_FILE)
        if not policy_path.exists():
            LOGGER.debug("policy_file_missing", extra={"path": str(policy_path)})
            return cls(path=policy_path, prompt=prompt)

        try:
            raw = json.loads(policy_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            msg = f"failed to parse policy file {policy_path}: {exc}"
            raise PolicyError(msg) from exc

        rules = _rules_from_json(raw, policy_path)
        LOGGER.debug("policy_loaded", extra={"path": str(policy_path), "rules": len(rules)})
        return cls(rules, path=policy_path, prompt=prompt)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.dumps(), encoding="utf-8")
        LOGGER.debug("policy_saved", extra={"path": str(self.path), "rules": len(self._rules)})

    def dumps(self) -> str:
        return json.dumps([rule.to_dict() for rule in self._rules], indent=2, ensure_ascii=False)

    @property
    def rules(self) -> list[Rule]:
        return [Rule(rule.pattern, rule.decision) for rule in self._rules]

    def find(self, pattern: str) -> Rule | None:
        for rule in self._rules:
            if rule.pattern == pattern:
                return rule
        return None

    def add(self, rule: Rule) -> None:
        existing = self.find(rule.pattern)
        if existing is not None:
            existing.decision = rule.decision
            return
        self._rules.append(Rule(rule.pattern, rule.decision))

    def set_always_allow(self, enabled: bool) -> None:
        self._always_allow = enabled

    def is_always_allow(self) -> bool:
        return self._always_allow

    def match(self, command: str) -> Rule | None:
        """Return the first rule, in insertion order, whose pattern matches."""
        for rule in self._rules:
            if rule.matches(command):
                return rule
        return None

    def approve(self, command: str, description: str) -> Decision:
        if self._always_allow:
            return Decision.ALWAYS

        rule = self.match(command)
        if rule is not None:
            LOGGER.info(
                "approval_rule_matched",
                extra={"pattern": rule.pattern, "decision": rule.decision.value},
            )
            return rule.decision

        if self.prompt is None:
            raise ApprovalError("approval required but no interactive prompt is available")

        try:
            decision = self.prompt(command, description)
        except (EOFError, OSError) as exc:
            msg = f"failed to read approval decision: {str(exc) or type(exc).__name__}"
            raise ApprovalError(msg) from exc

        if decision in {Decision.ALWAYS, Decision.NEVER}:
            self.add(Rule(command, decision))
        LOGGER.info("approval_prompted", extra={"decision": decision.value})
        return decision


def _rules_from_json(raw: object, path: Path) -> list[Rule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise PolicyError(f"policy file {path} must contain a JSON array")

    rules: list[Rule] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise PolicyError(f"policy file {path} contains a non-object rule")
        pattern = entry.get("pattern")
        decision = entry.get("decision")
        if not isinstance(pattern, str):
            raise PolicyError(f"policy rule pattern must be a string: {entry!r}")
        try:
            rules.append(Rule(pattern, Decision(decision)))
        except ValueError as exc:
            raise PolicyError(f"unknown policy decision: {decision!r}") from exc
    return rules
