"""Thin model client that sends the transcript and returns the raw reply text."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from http.client import HTTPException
from typing import Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from terminusai.agent.models import ChatMessage

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ProviderError(RuntimeError):
    """A failed provider call.

    ``retryable`` is set when the provider knows whether the failure is
    transient; when it is None the agent loop classifies the message text.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class Provider(Protocol):
    def chat(self, messages: Sequence[ChatMessage]) -> str: ...


class LLMClient:
    """Small HTTP client for the OpenAI Responses or chat-completions APIs."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        api_url: str = "https://api.openai.com/v1/responses",
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout

    @property
    def uses_chat_completions(self) -> bool:
        return self.api_url.rstrip("/").endswith("/chat/completions")

    def chat(self, messages: Sequence[ChatMessage]) -> str:
        payload = self._build_payload(messages)
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "messages": len(messages),
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise ProviderError(
                details,
                status_code=exc.code,
                retryable=exc.code in RETRYABLE_STATUS_CODES,
            ) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={"api_url": self.api_url, "model": self.model, "reason": str(exc.reason)},
            )
            if isinstance(exc.reason, TimeoutError):
                raise ProviderError(
                    f"Model request timeout: {exc.reason}", retryable=True
                ) from exc
            raise ProviderError(f"Model request transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "timeout_seconds": self.timeout,
                },
            )
            raise ProviderError(
                f"Model request timeout after {self.timeout:.1f}s", retryable=True
            ) from exc
        except (OSError, HTTPException) as exc:
            # Connection drops while reading the body are not wrapped by urlopen.
            LOGGER.error(
                "llm_response_read_error",
                extra={"api_url": self.api_url, "model": self.model, "error": repr(exc)},
            )
            raise ProviderError(
                f"Model request transport error: {str(exc) or type(exc).__name__}"
            ) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": str(exc)},
            )
            raise ProviderError(f"Model response parsing error: {exc}", retryable=False) from exc

        raw = self._coerce_object_dict(raw_response)
        if raw is None:
            raise ProviderError(
                "Model response parsing error: expected top-level object", retryable=False
            )
        text = self._extract_output_text(raw)
        if text is None:
            raise ProviderError("Model response contained no output text", retryable=False)
        return text

    def _build_payload(self, messages: Sequence[ChatMessage]) -> dict[str, object]:
        serialized = [message.to_dict() for message in messages]
        if self.uses_chat_completions:
            return {"model": self.model, "messages": serialized}
        return {"model": self.model, "input": serialized}

    @staticmethod
    def _coerce_object_dict(value: object) -> dict[str, object] | None:
        if not isinstance(value, dict):
            return None
        return {str(key): raw_value for key, raw_value in value.items()}

    @classmethod
    def _extract_output_text(cls, payload: dict[str, object]) -> str | None:
        choices = payload.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                choice_object = cls._coerce_object_dict(choice)
                if choice_object is None:
                    continue
                message = cls._coerce_object_dict(choice_object.get("message"))
                if message is not None and isinstance(message.get("content"), str):
                    return str(message["content"])
            return None

        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None

        parts: list[str] = []
        for item in output_items:
            item_object = cls._coerce_object_dict(item)
            if item_object is None:
                continue
            content_items = item_object.get("content")
            if not isinstance(content_items, list):
                continue
            for content in content_items:
                content_object = cls._coerce_object_dict(content)
                if content_object is None:
                    continue
                content_text = content_object.get("text")
                if content_object.get("type") == "output_text" and isinstance(content_text, str):
                    parts.append(content_text)
        if not parts:
            return None
        return "".join(parts)

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt
