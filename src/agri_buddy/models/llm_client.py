"""
LLM client abstraction.

Talks to a local Ollama server over its HTTP chat API. Every request has a
fixed timeout and is retried once after a fixed backoff; a 429 response is
retried after the delay the server asks for.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

from agri_buddy.config import get_settings
from agri_buddy.models.json_repair import extract_json_block, parse_json_loose
from agri_buddy.retry import RetryPolicy, fixed_backoff

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_DELAY_S = 5.0
_RETRY_DELAY_RE = re.compile(r'retryDelay["\s:]+(\d+)')


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")
    images: list[str] = Field(
        default_factory=list,
        description="Base64-encoded images for multimodal models",
    )


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    model: str = Field(default="", description="Model used for generation")
    raw_response: dict[str, Any] = Field(
        default_factory=dict,
        description="Raw response from the API",
    )


class LLMError(Exception):
    """Exception raised when the LLM server cannot produce a response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        retryable: bool = True,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable


class RateLimitedError(LLMError):
    """429 from the server; `retry_after` is the requested delay in seconds."""

    def __init__(self, message: str, retry_after: float, body: str = "") -> None:
        super().__init__(message, status_code=429, body=body, retryable=True)
        self.retry_after = retry_after


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, LLMError) and error.retryable


def parse_retry_after(response: httpx.Response) -> float:
    """Delay requested by a 429 response, from the header or a retryDelay field."""
    header = response.headers.get("Retry-After")
    if header:
        try:
            return float(header)
        except ValueError:
            logger.debug(f"Unparseable Retry-After header: {header!r}")
    m = _RETRY_DELAY_RE.search(response.text or "")
    if m:
        return float(m.group(1))
    return DEFAULT_RATE_LIMIT_DELAY_S


class LLMClientBase(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.2,
        *,
        json_mode: bool = False,
        model: str | None = None,
    ) -> LLMResponse:
        """
        Generate a chat completion.

        Args:
            messages: Conversation history.
            temperature: Sampling temperature.
            json_mode: Ask the server to constrain output to JSON.
            model: Override the configured model.

        Returns:
            Generated response.

        Raises:
            LLMError: When no response could be obtained.
        """
        ...


class LLMClient(LLMClientBase):
    """
    Ollama HTTP client.

    The underlying httpx.AsyncClient is created lazily and reused; call
    `close()` when done.
    """

    def __init__(
        self,
        endpoint: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_backoff_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            endpoint: Ollama base URL (defaults to settings).
            model: Model name (defaults to settings).
            timeout: Per-request timeout in seconds.
            max_retries: Retries after the first attempt (default 1).
            retry_backoff_s: Fixed delay before a retry.
            transport: Optional httpx transport (used by tests).
        """
        settings = get_settings()
        self._endpoint = (endpoint or settings.llm_endpoint).rstrip("/")
        self._model = model or settings.llm_model_name
        self._timeout = timeout if timeout is not None else settings.llm_timeout
        retries = max_retries if max_retries is not None else settings.llm_max_retries
        backoff = retry_backoff_s if retry_backoff_s is not None else settings.llm_retry_backoff_s
        self._retry_policy = RetryPolicy(
            max_attempts=retries + 1,
            backoff=fixed_backoff(backoff),
            should_retry=_is_retryable,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(f"Initialized LLM client endpoint={self._endpoint} model={self._model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._model

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._endpoint,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _post_chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post("/api/chat", json=payload)
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM request timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise LLMError(f"LLM transport error: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(
                "LLM rate limited",
                retry_after=parse_retry_after(response),
                body=response.text,
            )
        if response.status_code >= 500:
            raise LLMError(
                f"LLM server error {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        if response.status_code >= 400:
            raise LLMError(
                f"LLM request rejected {response.status_code}",
                status_code=response.status_code,
                body=response.text,
                retryable=False,
            )
        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError("LLM returned a non-JSON envelope", body=response.text) from e
        if not isinstance(data, dict) or not isinstance(data.get("message") or {}, dict):
            raise LLMError("LLM returned a malformed envelope", body=response.text, retryable=False)
        return data

    async def chat(
        self,
        messages: list[Message],
        temperature: float = 0.2,
        *,
        json_mode: bool = False,
        model: str | None = None,
    ) -> LLMResponse:
        used_model = model or self._model
        payload: dict[str, Any] = {
            "model": used_model,
            "messages": [m.model_dump(exclude_defaults=True) for m in messages],
            "stream": False,
            "options": {"temperature": temperature},
        }
        if json_mode:
            payload["format"] = "json"

        data = await self._retry_policy.run(lambda: self._post_chat(payload), label="LLM chat")
        content = str((data.get("message") or {}).get("content") or "").strip()
        logger.debug(f"LLM response length: {len(content)} chars")
        return LLMResponse(
            content=content,
            finish_reason=str(data.get("done_reason") or "stop"),
            model=used_model,
            raw_response=data,
        )

    async def chat_with_json(
        self,
        messages: list[Message],
        schema: dict[str, Any] | None = None,
        temperature: float = 0.2,
        *,
        model: str | None = None,
    ) -> dict[str, Any]:
        """
        Generate a chat completion with JSON structured output.

        Args:
            messages: Conversation history.
            schema: Optional JSON schema for expected output.
            temperature: Sampling temperature (lower for more deterministic).
            model: Override the configured model.

        Returns:
            Parsed JSON object, or an empty dict when the output cannot be repaired.

        Raises:
            LLMError: When the server could not be reached.
        """
        instruction = "You must respond with valid JSON only. No additional text or explanation."
        if schema:
            instruction += f" Your response must match this JSON schema: {json.dumps(schema, ensure_ascii=False)}"
        augmented = [Message(role="system", content=instruction)] + messages

        response = await self.chat(augmented, temperature, json_mode=True, model=model)
        if not response.content:
            logger.warning("JSON chat returned empty content")
            return {}

        parsed = parse_json_loose(extract_json_block(response.content))
        if parsed is None:
            parsed = parse_json_loose(response.content)
        if isinstance(parsed, dict):
            return parsed
        if isinstance(parsed, list):
            return {"items": parsed}

        logger.warning("Failed to parse JSON from LLM response")
        logger.debug(f"Response content: {response.content[:500]}")
        return {}

    async def close(self) -> None:
        """Close the client and release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
