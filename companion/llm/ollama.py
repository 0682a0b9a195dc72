"""
Ollama Client - local model server over HTTP

Talks to the Ollama REST API (/api/generate, /api/tags, /api/show) with
httpx. Connection failures, missing models and timeouts are raised as
distinct ProviderError subclasses.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from companion.exceptions import (
    ModelNotFoundError,
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from companion.llm.provider import LLMProvider
from companion.logging import LLMLogEntry, llm_logger, now_iso

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"
DEFAULT_MODEL = "codellama:70b"

# Sampling options sent with every request
SAMPLING_DEFAULTS = {
    "top_p": 0.9,
    "top_k": 40,
    "repeat_penalty": 1.1,
}


@dataclass
class OllamaConfig:
    """Connection and sampling settings for the Ollama server."""

    url: str = DEFAULT_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: float = 30.0


class OllamaClient(LLMProvider):
    """
    Client for a local Ollama server.

    The httpx client is created lazily; pass http_client to inject one
    (tests use httpx.MockTransport).
    """

    name = "ollama"

    def __init__(
        self,
        config: OllamaConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or OllamaConfig()
        self._client = http_client
        self._owns_client = http_client is None
        self._stale_clients: list[httpx.AsyncClient] = []
        self._connected = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.url,
                timeout=self.config.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._client

    def _payload(self, prompt: str, cfg: OllamaConfig, stream: bool) -> dict[str, Any]:
        return {
            "model": cfg.model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": cfg.temperature,
                "num_predict": cfg.max_tokens,
                **SAMPLING_DEFAULTS,
            },
        }

    def _merged(self, options: dict[str, Any] | None) -> OllamaConfig:
        data = asdict(self.config)
        data.update({k: v for k, v in (options or {}).items() if k in data})
        return OllamaConfig(**data)

    def _translate(self, error: Exception, cfg: OllamaConfig) -> ProviderError:
        """Map transport errors to the provider error family."""
        if isinstance(error, httpx.ConnectError):
            return ProviderConnectionError(
                f"Cannot connect to Ollama server at {cfg.url}. Please ensure Ollama is running.",
                {"url": cfg.url},
            )
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError(
                f"Ollama request timed out after {cfg.timeout}s",
                timeout_seconds=cfg.timeout,
            )
        if isinstance(error, httpx.HTTPStatusError):
            if error.response.status_code == 404:
                return ModelNotFoundError(
                    f"Model '{cfg.model}' not found. Please install it with: ollama pull {cfg.model}",
                    model=cfg.model,
                )
            try:
                message = error.response.json().get("error", error.response.text)
            except (json.JSONDecodeError, AttributeError):
                message = error.response.text
            return ProviderResponseError(
                f"Ollama API error: {message}",
                {"status_code": error.response.status_code},
            )
        if isinstance(error, httpx.HTTPError):
            return ProviderConnectionError(f"Ollama transport error: {error}")
        return ProviderError(f"Unexpected error: {error}")

    async def _ensure_connection(self) -> None:
        if self._connected:
            return
        response = await self._get_client().get("/api/tags")
        response.raise_for_status()
        self._connected = True

    async def generate(self, prompt: str, options: dict[str, Any] | None = None) -> str:
        """
        Generate a completion via POST /api/generate (stream=False).

        Raises:
            ProviderConnectionError: Server unreachable
            ModelNotFoundError: Model not pulled (HTTP 404)
            ProviderTimeoutError: Request timed out
            ProviderResponseError: Other API errors or malformed payloads
        """
        cfg = self._merged(options)
        start = time.monotonic()
        log_entry = LLMLogEntry(
            timestamp=now_iso(),
            request_id=str(uuid.uuid4()),
            provider=self.name,
            method="generate",
            model=cfg.model,
            prompt=prompt[:5000],
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )

        try:
            await self._ensure_connection()
            response = await self._get_client().post(
                "/api/generate", json=self._payload(prompt, cfg, stream=False)
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            error = self._translate(e, cfg)
            self._connected = False
            log_entry.error = error.message[:500]
            log_entry.error_type = type(error).__name__
            log_entry.latency_ms = int((time.monotonic() - start) * 1000)
            llm_logger.error(log_entry.to_json())
            raise error from e
        except json.JSONDecodeError as e:
            raise ProviderResponseError("Ollama returned invalid JSON", {"error": str(e)}) from e

        content = data.get("response")
        if content is None:
            raise ProviderResponseError(
                "Ollama response missing 'response' field",
                {"keys": list(data.keys())},
            )

        log_entry.response_content = content[:10000]
        log_entry.completion_tokens = data.get("eval_count", 0) or 0
        log_entry.prompt_tokens = data.get("prompt_eval_count", 0) or 0
        log_entry.latency_ms = int((time.monotonic() - start) * 1000)
        llm_logger.info(log_entry.to_json())

        return content

    async def generate_stream(
        self,
        prompt: str,
        on_chunk: Callable[[str], None],
        options: dict[str, Any] | None = None,
    ) -> None:
        """Stream a completion, calling on_chunk for each partial response."""
        cfg = self._merged(options)
        try:
            await self._ensure_connection()
            async with self._get_client().stream(
                "POST", "/api/generate", json=self._payload(prompt, cfg, stream=True)
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue  # partial line
                    if data.get("response"):
                        on_chunk(data["response"])
                    if data.get("done"):
                        break
        except httpx.HTTPError as e:
            self._connected = False
            raise self._translate(e, cfg) from e

    async def list_models(self) -> list[str]:
        """Names of locally pulled models."""
        try:
            response = await self._get_client().get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self._translate(e, self.config) from e
        return [model["name"] for model in response.json().get("models", [])]

    async def check_model(self, model: str) -> bool:
        return model in await self.list_models()

    async def get_model_info(self, model: str) -> dict[str, Any]:
        try:
            response = await self._get_client().post("/api/show", json={"name": model})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self._translate(e, OllamaConfig(**{**asdict(self.config), "model": model})) from e
        return response.json()

    def update_config(self, options: dict[str, Any]) -> None:
        """Apply new settings; the HTTP client is rebuilt on next use."""
        self.config = self._merged(options)
        self._connected = False
        if self._owns_client and self._client is not None:
            # Closed by dispose(); a fresh client picks up url/timeout
            self._stale_clients.append(self._client)
            self._client = None

    def get_config(self) -> dict[str, Any]:
        return asdict(self.config)

    async def dispose(self) -> None:
        while self._stale_clients:
            await self._stale_clients.pop().aclose()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
