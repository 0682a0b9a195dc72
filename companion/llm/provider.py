"""
LLM Provider contract.

Planner and Executor depend only on this interface. Concrete clients
(Ollama, OpenAI-compatible) are constructed at the composition root and
injected, never resolved from global configuration inside the core.

Implementations must raise the ProviderError family so callers can tell
an unreachable endpoint (ProviderConnectionError) from a missing model
(ModelNotFoundError), a timeout (ProviderTimeoutError) and so on.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any


class LLMProvider(ABC):
    """Single-shot text completion capability."""

    name: str = "provider"

    @abstractmethod
    async def generate(self, prompt: str, options: dict[str, Any] | None = None) -> str:
        """
        Generate a full completion in one shot.

        Args:
            prompt: Prompt text
            options: Per-call overrides (model, temperature, max_tokens)

        Returns:
            The completion text

        Raises:
            ProviderError: On connectivity, timeout, model or response failures
        """

    async def generate_stream(
        self,
        prompt: str,
        on_chunk: Callable[[str], None],
        options: dict[str, Any] | None = None,
    ) -> None:
        """Stream a completion. Providers without streaming emit one chunk."""
        on_chunk(await self.generate(prompt, options))

    async def list_models(self) -> list[str]:
        """List available models if the provider supports it."""
        return []

    def update_config(self, options: dict[str, Any]) -> None:
        """Update provider-specific configuration at runtime."""

    def get_config(self) -> dict[str, Any]:
        """Return a configuration snapshot."""
        return {}

    async def dispose(self) -> None:
        """Release sockets and clients."""
