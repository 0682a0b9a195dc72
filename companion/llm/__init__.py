"""
Language-model providers.

create_provider() is the only place that reads CompanionConfig to pick a
client; everything downstream receives an LLMProvider.
"""

from companion.config import CompanionConfig, get_openai_key
from companion.exceptions import ConfigError
from companion.llm.ollama import OllamaClient, OllamaConfig
from companion.llm.openai_client import OpenAIClient, OpenAIConfig
from companion.llm.provider import LLMProvider


def create_provider(config: CompanionConfig) -> LLMProvider:
    """
    Build the configured provider.

    Raises:
        ConfigError: Unknown provider, or OpenAI selected without an API key
    """
    if config.llm_provider == "ollama":
        return OllamaClient(
            OllamaConfig(
                url=config.ollama_url,
                model=config.default_model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            )
        )
    if config.llm_provider == "openai":
        return OpenAIClient(
            OpenAIConfig(
                api_key=get_openai_key(config),
                model=config.openai_model,
                endpoint=config.openai_endpoint,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout,
            )
        )
    raise ConfigError(f"Unknown LLM provider '{config.llm_provider}'")


__all__ = [
    "LLMProvider",
    "OllamaClient",
    "OllamaConfig",
    "OpenAIClient",
    "OpenAIConfig",
    "create_provider",
]
