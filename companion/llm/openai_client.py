"""
OpenAI Client - chat completions against an OpenAI-compatible endpoint

The prompt is sent as a single user message. The AsyncOpenAI client is
created lazily inside the running event loop and recreated when the loop
changes, so repeated asyncio.run() calls from the CLI stay safe.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    NotFoundError,
    OpenAIError,
    RateLimitError,
)

from companion.exceptions import (
    ModelNotFoundError,
    ProviderConnectionError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from companion.llm.provider import LLMProvider
from companion.logging import LLMLogEntry, llm_logger, now_iso

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class OpenAIConfig:
    """Settings for an OpenAI-compatible chat completions endpoint."""

    api_key: str = ""
    model: str = DEFAULT_MODEL
    endpoint: str = DEFAULT_ENDPOINT
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: float = 30.0


class OpenAIClient(LLMProvider):
    """Provider backed by the openai SDK."""

    name = "openai"

    def __init__(self, config: OpenAIConfig, client: AsyncOpenAI | None = None):
        self.config = config

        # Lazy-initialized client (created in async context)
        self._client: AsyncOpenAI | None = client
        self._client_loop: asyncio.AbstractEventLoop | None = None
        self._injected = client is not None

        self.total_tokens_used = 0
        self.request_count = 0

    async def _get_client(self) -> AsyncOpenAI:
        """Get or create AsyncOpenAI client, recreating if event loop changed."""
        if self._injected:
            return self._client  # type: ignore[return-value]

        current_loop = asyncio.get_running_loop()

        # Old loop is dead; abandon its client without closing
        if self._client is not None and self._client_loop is not current_loop:
            self._client = None
            self._client_loop = None

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.endpoint,
                timeout=self.config.timeout,
                max_retries=0,
            )
            self._client_loop = current_loop

        return self._client

    async def generate(self, prompt: str, options: dict[str, Any] | None = None) -> str:
        """
        Send the prompt as one user message and return the first choice.

        Raises:
            ProviderConnectionError: Endpoint unreachable or auth failure
            ProviderTimeoutError: Request timed out
            ModelNotFoundError: Unknown model (HTTP 404)
            ProviderRateLimitError: Rate limited (HTTP 429)
            ProviderResponseError: No choices in the response, or other API errors
        """
        options = options or {}
        model = options.get("model", self.config.model)
        temperature = options.get("temperature", self.config.temperature)
        max_tokens = options.get("max_tokens", self.config.max_tokens)

        start_time = time.monotonic()
        log_entry = LLMLogEntry(
            timestamp=now_iso(),
            request_id=str(uuid.uuid4()),
            provider=self.name,
            method="generate",
            model=model,
            prompt=prompt[:5000],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        try:
            client = await self._get_client()
            response = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            error = self._translate(e, model)
            log_entry.error = str(e)[:500]
            log_entry.error_type = type(e).__name__
            log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
            llm_logger.error(log_entry.to_json())
            raise error from e

        self.request_count += 1
        if response.usage:
            self.total_tokens_used += response.usage.total_tokens

        if not response.choices or response.choices[0].message is None:
            log_entry.error = "No response from OpenAI"
            log_entry.error_type = "ProviderResponseError"
            llm_logger.error(log_entry.to_json())
            raise ProviderResponseError("No response from OpenAI", {"model": model})

        choice = response.choices[0]
        content = choice.message.content or ""

        log_entry.response_content = content[:10000]
        log_entry.finish_reason = choice.finish_reason or ""
        log_entry.prompt_tokens = response.usage.prompt_tokens if response.usage else 0
        log_entry.completion_tokens = response.usage.completion_tokens if response.usage else 0
        log_entry.latency_ms = int((time.monotonic() - start_time) * 1000)
        llm_logger.info(log_entry.to_json())

        return content

    def _translate(self, error: OpenAIError, model: str):
        if isinstance(error, APITimeoutError):
            return ProviderTimeoutError(
                f"OpenAI request timed out after {self.config.timeout}s",
                timeout_seconds=self.config.timeout,
            )
        if isinstance(error, APIConnectionError):
            return ProviderConnectionError(
                f"Cannot connect to OpenAI endpoint at {self.config.endpoint}",
                {"error": str(error)},
            )
        if isinstance(error, NotFoundError):
            return ModelNotFoundError(f"Model '{model}' not found", model=model)
        if isinstance(error, RateLimitError):
            retry_after = error.response.headers.get("retry-after")
            return ProviderRateLimitError(
                f"Rate limited: {error}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if isinstance(error, APIStatusError) and error.status_code in (401, 403):
            return ProviderConnectionError(f"Authentication failed: {error}")
        return ProviderResponseError(f"OpenAI API error: {error}")

    async def generate_stream(
        self,
        prompt: str,
        on_chunk: Callable[[str], None],
        options: dict[str, Any] | None = None,
    ) -> None:
        """Stream a completion, calling on_chunk for each content delta."""
        options = options or {}
        model = options.get("model", self.config.model)
        try:
            client = await self._get_client()
            stream = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=options.get("temperature", self.config.temperature),
                max_tokens=options.get("max_tokens", self.config.max_tokens),
                stream=True,
            )
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    on_chunk(chunk.choices[0].delta.content)
        except OpenAIError as e:
            raise self._translate(e, model) from e

    async def list_models(self) -> list[str]:
        try:
            client = await self._get_client()
            page = await client.models.list()
        except OpenAIError as e:
            raise self._translate(e, self.config.model) from e
        return [model.id for model in page.data]

    def update_config(self, options: dict[str, Any]) -> None:
        data = asdict(self.config)
        data.update({k: v for k, v in options.items() if k in data})
        self.config = OpenAIConfig(**data)
        if not self._injected:
            self._client = None
            self._client_loop = None

    def get_config(self) -> dict[str, Any]:
        data = asdict(self.config)
        data["api_key"] = "***" if data["api_key"] else ""
        return data

    async def dispose(self) -> None:
        """Close the client and release resources."""
        if self._client is not None and not self._injected:
            await self._client.close()
            self._client = None
            self._client_loop = None
