"""Best-effort recovery of JSON objects embedded in free-form model text."""

from __future__ import annotations

import json
import re
from collections.abc import Iterator

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

DEFAULT_MAX_BRACE_CANDIDATES = 4096


def iter_candidates(
    raw: str, *, max_brace_candidates: int = DEFAULT_MAX_BRACE_CANDIDATES
) -> Iterator[str]:
    """Yield substrings of ``raw`` that may hold a JSON object, most likely first.

    Order: the trimmed text, the body of the first fenced code block, then every
    span from an opening brace (left to right) to a closing brace (right to
    left). Spans equal to the trimmed text or the fence body are skipped. Spans
    are sliced one at a time and never retained.
    """
    trimmed = raw.strip()
    earlier = [trimmed]
    yield trimmed

    fence = _FENCE_PATTERN.search(raw)
    if fence:
        body = fence.group(1).strip()
        if body != trimmed:
            earlier.append(body)
            yield body

    open_positions = [idx for idx, char in enumerate(raw) if char == "{"]
    close_positions = [idx for idx, char in enumerate(raw) if char == "}"]
    examined = 0
    for start in open_positions:
        for end in reversed(close_positions):
            if end <= start:
                break
            if examined >= max_brace_candidates:
                return
            examined += 1
            span = raw[start : end + 1]
            if span in earlier:
                continue
            yield span


def decode_object(candidate: str) -> dict[str, object] | None:
    """Decode ``candidate`` as a JSON object, returning None for anything else."""
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def iter_objects(
    raw: str, *, max_brace_candidates: int = DEFAULT_MAX_BRACE_CANDIDATES
) -> Iterator[dict[str, object]]:
    for candidate in iter_candidates(raw, max_brace_candidates=max_brace_candidates):
        decoded = decode_object(candidate)
        if decoded is not None:
            yield decoded
