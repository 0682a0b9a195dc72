"""
Code Companion - Configuration Management

Loads settings from ~/.config/companion/config.json and the environment.
Settings cover provider selection, provider connection details, the
file-change confirmation workflow, history persistence and coding
preferences forwarded to prompts.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from companion.exceptions import ConfigError
from companion.state import UserPreferences


CONFIG_DIR = Path.home() / ".config" / "companion"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_HISTORY_DB = CONFIG_DIR / "companion.db"

PROVIDERS = ("ollama", "openai")


@dataclass
class CompanionConfig:
    """Main configuration container for Code Companion."""

    llm_provider: str = "ollama"

    # Ollama
    ollama_url: str = "http://localhost:11434"
    default_model: str = "codellama:70b"

    # OpenAI-compatible endpoint
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_endpoint: str = "https://api.openai.com/v1"

    # Shared generation settings
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: float = 30.0  # seconds

    # File-change confirmation workflow
    confirm_changes: bool = True
    confirmation_timeout: float | None = None  # None waits until answered or cancelled

    # History
    history_limit: int = 50
    history_db_path: str = str(DEFAULT_HISTORY_DB)

    # Preferences forwarded into the task context
    coding_style: str = "functional"
    framework: str | None = None
    testing_framework: str | None = None
    documentation_style: str | None = None
    max_line_length: int = 80
    indentation_size: int = 4

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.llm_provider not in PROVIDERS:
            raise ConfigError(
                f"Unknown LLM provider '{self.llm_provider}'",
                {"available": list(PROVIDERS)},
            )
        if self.history_limit < 1:
            raise ConfigError("history_limit must be at least 1", {"history_limit": self.history_limit})

    @property
    def user_preferences(self) -> UserPreferences:
        """Preferences snapshot for the context analyzer."""
        return UserPreferences(
            coding_style=self.coding_style,
            framework=self.framework,
            testing_framework=self.testing_framework,
            documentation_style=self.documentation_style,
            max_line_length=self.max_line_length,
            indentation_size=self.indentation_size,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization (API key excluded)."""
        data = asdict(self)
        data.pop("openai_api_key", None)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompanionConfig":
        """Create config from a dictionary, keeping unknown keys in `extra`."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**values, extra=extra)


def ensure_config_dir() -> None:
    """Ensure configuration directory exists."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> CompanionConfig:
    """
    Load configuration from file and environment.

    Environment variables take precedence over the file:
    COMPANION_LLM_PROVIDER, COMPANION_MODEL, OLLAMA_URL, OPENAI_API_KEY.

    Args:
        path: Config file to read (default: ~/.config/companion/config.json)

    Returns:
        CompanionConfig with all settings loaded

    Raises:
        ConfigError: If configuration is invalid
    """
    config_path = path or CONFIG_FILE
    data: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Invalid JSON in {config_path}",
                {"error": str(e)},
            )
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a JSON object in {config_path}")

    if provider := os.environ.get("COMPANION_LLM_PROVIDER"):
        data["llm_provider"] = provider
    if ollama_url := os.environ.get("OLLAMA_URL"):
        data["ollama_url"] = ollama_url
    if api_key := os.environ.get("OPENAI_API_KEY"):
        data.setdefault("openai_api_key", api_key)
    if model := os.environ.get("COMPANION_MODEL"):
        if data.get("llm_provider") == "openai":
            data["openai_model"] = model
        else:
            data["default_model"] = model

    try:
        return CompanionConfig.from_dict(data)
    except TypeError as e:
        raise ConfigError("Invalid configuration values", {"error": str(e)})


def save_config(config: CompanionConfig, path: Path | None = None) -> None:
    """
    Save configuration to file. The API key is never written.

    Args:
        config: CompanionConfig to save
        path: Destination (default: ~/.config/companion/config.json)
    """
    config_path = path or CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.to_dict()
    extra = data.pop("extra", {})
    data.update(extra)

    with open(config_path, "w") as f:
        json.dump(data, f, indent=2)


def get_openai_key(config: CompanionConfig) -> str:
    """
    Get the OpenAI API key from config or environment.

    Raises:
        ConfigError: If the key is not set
    """
    key = config.openai_api_key or os.environ.get("OPENAI_API_KEY", "")
    if not key:
        raise ConfigError(
            "OpenAI API key not set",
            {"hint": "Export OPENAI_API_KEY=your-key-here or set openai_api_key in config.json"},
        )
    return key
