"""Completion capability: protocol, OpenAI-compatible httpx client, error taxonomy."""

from __future__ import annotations

import asyncio
import json
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from context_engine._utils import elapsed_ms

if TYPE_CHECKING:
    from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)

CONTEXT_LENGTH_MARKER = "context_length_exceeded"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 0.5


# --- Errors ---


class CompletionError(Exception):
    """Base class for failures of the completion capability."""


class TransientNetworkError(CompletionError):
    """Socket or timeout failure that persisted through every retry."""


class ApiError(CompletionError):
    """Non-2xx status or an error payload from the completion service."""

    def __init__(self, status: int, body: str, message: str | None = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"API error {status}: {body}")


class ContextLengthExceededError(ApiError):
    """The request did not fit the model's context window."""


def _has_marker(value: Any) -> bool:
    return isinstance(value, str) and CONTEXT_LENGTH_MARKER in value.lower()


def classify_error_payload(status: int, body: str, error: dict[str, Any] | None = None) -> ApiError:
    """Turn an error response into :class:`ApiError` or its context-length subclass."""
    message = None
    if error is not None:
        message = error.get("message")
        if _has_marker(error.get("type")) or _has_marker(error.get("code")):
            return ContextLengthExceededError(status, body, message)
    if _has_marker(body):
        return ContextLengthExceededError(status, body, message)
    return ApiError(status, body, message)


# --- Wire models ---


class ChatMessage(BaseModel):
    """A ``{role, content}`` pair as sent to the completion endpoint."""

    role: str
    content: str


class ChatCompletionRequest(BaseModel):
    """Body of ``POST /chat/completions``."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int
    temperature: float


class CompletionUsage(BaseModel):
    """Token usage reported by the service."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class _ApiChoiceMessage(BaseModel):
    role: str | None = None
    content: str | None = None


class _ApiChoice(BaseModel):
    index: int | None = None
    message: _ApiChoiceMessage | None = None
    finish_reason: str | None = None


class _ApiChatResponse(BaseModel):
    id: str | None = None
    choices: list[_ApiChoice] | None = None
    usage: CompletionUsage | None = None
    error: dict[str, Any] | None = None


class Completion(BaseModel):
    """Reply text plus usage."""

    content: str
    usage: CompletionUsage | None = None


class CompletionClient(Protocol):
    """The only thing the engine needs from a model provider."""

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Return a completion or raise :class:`CompletionError`."""
        ...


# --- OpenAI-compatible client ---


class OpenAICompatibleClient:
    """POSTs to ``{base_url}/chat/completions`` and classifies failures.

    Transport failures are retried with exponential backoff; API errors are
    raised on the first occurrence.
    """

    def __init__(
        self,
        *,
        openai_base_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.openai_base_url = openai_base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    async def complete(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Send one chat completion request."""
        request = ChatCompletionRequest(
            model=model,
            messages=list(messages),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        start = perf_counter()
        response = await self._post(request.model_dump())
        completion = self._parse_response(response)
        LOGGER.info(
            "Completion from %s in %.1f ms (usage=%s)",
            model,
            elapsed_ms(start),
            completion.usage.model_dump() if completion.usage else None,
        )
        return completion

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        url = f"{self.openai_base_url}/chat/completions"
        attempt = 0
        while True:
            attempt += 1
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    return await client.post(url, json=payload, headers=headers)
            except httpx.TransportError as exc:
                if attempt >= self.max_attempts:
                    msg = f"Network error after {attempt} attempt(s): {exc}"
                    raise TransientNetworkError(msg) from exc
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                LOGGER.warning(
                    "Completion request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)

    @staticmethod
    def _parse_response(response: httpx.Response) -> Completion:
        body = response.text
        if response.status_code != 200:  # noqa: PLR2004
            LOGGER.error("Upstream error %s: %s", response.status_code, body)
            raise classify_error_payload(response.status_code, body)

        try:
            parsed = _ApiChatResponse.model_validate(response.json())
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ApiError(response.status_code, body, f"Malformed completion response: {exc}") from exc

        if parsed.error is not None:
            raise classify_error_payload(response.status_code, body, parsed.error)

        content = None
        if parsed.choices and parsed.choices[0].message:
            content = parsed.choices[0].message.content
        if content is None:
            raise ApiError(response.status_code, body, "Empty completion response")
        return Completion(content=content, usage=parsed.usage)
