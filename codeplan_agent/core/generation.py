"""Generation service: free-text and schema-validated model output.

Wraps an LLM provider behind two explicit capabilities:

* ``generate_text`` -- free text, used for code generation so that
  large source payloads never have to survive JSON escaping.
* ``generate_object`` -- structured output decoded from JSON and
  validated against an ``ObjectSchema``.  Used for planning.

The concrete backends speak the Anthropic Messages API and the OpenAI
chat-completions API over ``httpx``, with the same retry / back-off
conventions for both.

Typical usage::

    from codeplan_agent.config.settings import get_default_settings
    from codeplan_agent.core.generation import (
        GenerationService,
        Message,
        create_backend,
    )

    settings = get_default_settings()
    service = GenerationService(create_backend(settings), settings)
    text = await service.generate_text(
        [Message("user", "Say hello")], system="Be brief."
    )
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.errors import GenerationError, SchemaValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Anthropic API version header.
_ANTHROPIC_API_VERSION: str = "2023-06-01"

_DEFAULT_BASE_URLS: dict[str, str] = {
    "anthropic": "https://api.anthropic.com",
    "openai": "https://api.openai.com/v1",
}


@dataclass
class Message:
    """One conversation turn sent to the model.

    Attributes:
        role: ``"user"`` or ``"assistant"``.  System text is passed
            separately to the generation calls.
        content: The message text.
    """

    role: str
    content: str


class ObjectSchema(ABC, Generic[T]):
    """Validates decoded JSON and converts it to a typed object."""

    name: str = "object"

    @abstractmethod
    def describe(self) -> str:
        """Return a human-readable description of the expected JSON."""

    @abstractmethod
    def parse(self, data: Any) -> T:
        """Convert decoded JSON to ``T``.

        Raises:
            SchemaValidationError: If *data* does not match.
        """


def extract_json(text: str) -> str:
    """Extract a JSON payload from raw response text.

    Handles:

    - Bare JSON (starts with ``[`` or ``{``).
    - JSON wrapped in a Markdown fenced code block.
    - A single JSON object surrounded by prose.

    Returns:
        The extracted JSON string, or an empty string if no JSON could
        be found.
    """
    stripped = text.strip()

    if stripped.startswith("[") or stripped.startswith("{"):
        return stripped

    # Markdown code block: ```json ... ``` or ``` ... ```
    match = re.search(r"```(?:json)?\s*\n?(.*?)```", stripped, re.DOTALL)
    if match:
        return match.group(1).strip()

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        return stripped[start : end + 1]

    return ""


# ------------------------------------------------------------------
# Backends
# ------------------------------------------------------------------


class GenerationBackend(ABC):
    """Contract for an LLM provider.

    The two methods are deliberately separate: their failure modes
    differ (transport errors vs. schema mismatch) and callers pick one
    explicitly.
    """

    @abstractmethod
    async def generate_text(
        self,
        messages: list[Message],
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> str:
        """Generate free text.

        Raises:
            GenerationError: If the provider could not be reached or
                rejected the request.
        """

    @abstractmethod
    async def generate_object(
        self,
        messages: list[Message],
        system: str,
        schema: ObjectSchema[T],
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> T:
        """Generate a structured object validated against *schema*.

        Raises:
            GenerationError: On transport failure.
            SchemaValidationError: If the output is not valid JSON or
                does not match *schema*.
        """


class HttpGenerationBackend(GenerationBackend):
    """Shared HTTP plumbing for JSON-over-HTTPS chat APIs.

    Subclasses supply the endpoint, headers, payload shape and
    response-text extraction.  Retries use exponential back-off and
    only repeat on transport errors and 5xx responses.

    Args:
        settings: Controls model, timeouts, retries and back-off.
        api_key: Provider API key.  If empty, the provider-specific
            environment variable is used, then ``API_KEY``.  A missing
            key is not an error at construction time (useful for
            tests), but every request will fail.
    """

    provider: str = ""

    def __init__(self, settings: Settings, api_key: str = "") -> None:
        self._settings = settings
        env_prefix = self.provider.upper()
        self._api_key: str = (
            api_key
            or os.environ.get(f"{env_prefix}_API_KEY", "")
            or os.environ.get("API_KEY", "")
        )
        self._base_url: str = (
            settings.api_base_url
            or os.environ.get(f"{env_prefix}_BASE_URL", "")
            or os.environ.get("BASE_URL", "")
            or _DEFAULT_BASE_URLS.get(self.provider, "")
        ).rstrip("/")

    # -- Provider specifics -----------------------------------------

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Full URL the payload is POSTed to."""

    @abstractmethod
    def build_headers(self) -> dict[str, str]:
        """HTTP headers, including authentication."""

    @abstractmethod
    def build_payload(
        self,
        messages: list[Message],
        system: str,
        temperature: float,
        max_tokens: int,
    ) -> dict:
        """Request body for one generation call."""

    @abstractmethod
    def extract_text(self, body: dict) -> str:
        """Pull the generated text out of a 200 response body."""

    # -- Public API -------------------------------------------------

    async def generate_text(
        self,
        messages: list[Message],
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> str:
        payload = self.build_payload(messages, system, temperature, max_tokens)
        body = await self._post(payload)
        return self.extract_text(body)

    async def generate_object(
        self,
        messages: list[Message],
        system: str,
        schema: ObjectSchema[T],
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> T:
        structured_system = (
            f"{system}\n\n"
            f"Respond with ONLY a JSON value matching this {schema.name} "
            "shape. No prose, no Markdown.\n"
            f"{schema.describe()}"
        ).strip()

        raw = await self.generate_text(
            messages,
            system=structured_system,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        cleaned = extract_json(raw)
        if not cleaned:
            raise SchemaValidationError(
                f"No JSON found in {schema.name} response",
                raw=raw,
            )
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise SchemaValidationError(
                f"Malformed JSON in {schema.name} response: {exc}",
                raw=raw,
            ) from exc

        try:
            return schema.parse(data)
        except SchemaValidationError as exc:
            exc.raw = raw
            raise

    # -- Transport --------------------------------------------------

    async def _post(self, payload: dict) -> dict:
        """POST *payload* with retry and exponential back-off.

        Returns:
            The decoded JSON body of the first 200 response.

        Raises:
            GenerationError: When no API key is configured, on a 4xx
                response, on a 200 whose body is not JSON, or once
                retries are exhausted.
        """
        if not self._api_key:
            raise GenerationError(f"No API key configured for {self.provider}.")

        timeout = httpx.Timeout(
            self._settings.api_timeout_text_seconds,
            connect=10.0,
        )
        headers = self.build_headers()
        retries = max(1, self._settings.api_max_retries)
        last_error = ""

        for attempt in range(retries):
            start_ns = time.monotonic_ns()
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    http_resp = await client.post(
                        self.endpoint,
                        headers=headers,
                        json=payload,
                    )
                elapsed_ms = (time.monotonic_ns() - start_ns) / 1_000_000

                if http_resp.status_code == 200:
                    logger.debug(
                        "%s: response in %.0f ms", self.provider, elapsed_ms
                    )
                    try:
                        return http_resp.json()
                    except ValueError as exc:
                        raise GenerationError(f"Invalid JSON body: {exc}") from exc

                last_error = f"HTTP {http_resp.status_code}: {http_resp.text[:200]}"
                logger.warning(
                    "%s: attempt %d/%d failed: %s",
                    self.provider,
                    attempt + 1,
                    retries,
                    last_error,
                )

                # Only retry on transient server errors.
                if http_resp.status_code < 500:
                    break

            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "%s: attempt %d/%d error: %s",
                    self.provider,
                    attempt + 1,
                    retries,
                    last_error,
                )

            if attempt < retries - 1:
                delay = self._settings.api_backoff_base_seconds * (2**attempt)
                await asyncio.sleep(delay)

        raise GenerationError(last_error or "Generation request failed")


class AnthropicBackend(HttpGenerationBackend):
    """Anthropic Messages API backend."""

    provider = "anthropic"

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/v1/messages"

    def build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": _ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

    def build_payload(
        self,
        messages: list[Message],
        system: str,
        temperature: float,
        max_tokens: int,
    ) -> dict:
        payload: dict = {
            "model": self._settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": msg.role, "content": msg.content} for msg in messages
            ],
        }
        if system:
            payload["system"] = system
        return payload

    def extract_text(self, body: dict) -> str:
        parts = [
            block.get("text", "")
            for block in body.get("content", [])
            if block.get("type") == "text"
        ]
        return "".join(parts)


class OpenAIBackend(HttpGenerationBackend):
    """OpenAI-compatible chat-completions backend."""

    provider = "openai"

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/chat/completions"

    def build_headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self._api_key}",
            "content-type": "application/json",
        }

    def build_payload(
        self,
        messages: list[Message],
        system: str,
        temperature: float,
        max_tokens: int,
    ) -> dict:
        chat: list[dict[str, str]] = []
        if system:
            chat.append({"role": "system", "content": system})
        chat.extend({"role": msg.role, "content": msg.content} for msg in messages)
        return {
            "model": self._settings.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat,
        }

    def extract_text(self, body: dict) -> str:
        choices = body.get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content") or ""


_BACKENDS: dict[str, type[HttpGenerationBackend]] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
}


def create_backend(settings: Settings, api_key: str = "") -> GenerationBackend:
    """Return the backend selected by ``settings.llm_provider``.

    Raises:
        ValueError: If the provider is not supported.
    """
    backend_cls = _BACKENDS.get(settings.llm_provider.lower())
    if backend_cls is None:
        raise ValueError(f"Unsupported provider: {settings.llm_provider}")
    return backend_cls(settings, api_key=api_key)


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


class GenerationService:
    """Front door to a ``GenerationBackend`` with settings-driven defaults.

    Shared by the ``Planner`` (structured output) and the
    ``CodeGenerator`` (free text).

    Args:
        backend: The provider implementation.
        settings: Supplies default temperatures and token budgets.
    """

    def __init__(self, backend: GenerationBackend, settings: Settings) -> None:
        self._backend = backend
        self._settings = settings

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    async def generate_text(
        self,
        messages: list[Message],
        system: str = "",
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Generate free text; defaults to the code-generation settings."""
        return await self._backend.generate_text(
            messages,
            system=system,
            temperature=(
                self._settings.code_temperature if temperature is None else temperature
            ),
            max_tokens=max_tokens or self._settings.code_max_tokens,
        )

    async def generate_object(
        self,
        messages: list[Message],
        system: str,
        schema: ObjectSchema[T],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> T:
        """Generate a schema-validated object; defaults to plan settings."""
        return await self._backend.generate_object(
            messages,
            system=system,
            schema=schema,
            temperature=(
                self._settings.plan_temperature if temperature is None else temperature
            ),
            max_tokens=max_tokens or self._settings.max_tokens,
        )

    def __repr__(self) -> str:
        return f"GenerationService(backend={type(self._backend).__name__})"
