"""
Where the JSONL channels write and how verbose they are.

One LogConfig covers every channel. Files and levels are looked up per
channel, so adding a channel means adding a CHANNEL_FILES entry.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CHANNEL_FILES = {
    "llm": "llm.jsonl",
    "step": "steps.jsonl",
    "task": "tasks.jsonl",
}

ENV_PREFIX = "COMPANION_LOG_"


@dataclass
class LogConfig:
    """
    Log destination, rotation and levels.

    level applies to every channel unless channel_levels names that channel.
    Files rotate at max_size_mb and keep backup_count old copies.
    """

    log_dir: Path = field(default_factory=lambda: Path.home() / ".companion" / "logs")
    level: str = "INFO"
    channel_levels: dict[str, str] = field(default_factory=dict)
    max_size_mb: int = 10
    backup_count: int = 5

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LogConfig":
        """
        Build a config from COMPANION_LOG_* variables.

        COMPANION_LOG_LEVEL, COMPANION_LOG_DIR and COMPANION_LOG_MAX_SIZE_MB
        set the shared values; COMPANION_LOG_LEVEL_<CHANNEL> (e.g.
        COMPANION_LOG_LEVEL_LLM) overrides one channel.
        """
        env = os.environ if environ is None else environ
        config = cls()

        config.level = env.get(f"{ENV_PREFIX}LEVEL", config.level)
        for channel in CHANNEL_FILES:
            override = env.get(f"{ENV_PREFIX}LEVEL_{channel.upper()}")
            if override:
                config.channel_levels[channel] = override

        if log_dir := env.get(f"{ENV_PREFIX}DIR"):
            config.log_dir = Path(log_dir).expanduser()

        if max_size := env.get(f"{ENV_PREFIX}MAX_SIZE_MB"):
            try:
                config.max_size_mb = int(max_size)
            except ValueError:
                logger.warning(f"Ignoring {ENV_PREFIX}MAX_SIZE_MB={max_size!r}: not an integer")

        return config

    @property
    def max_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024

    def path_for(self, channel: str) -> Path:
        return self.log_dir / CHANNEL_FILES[channel]

    def level_for(self, channel: str) -> str:
        return self.channel_levels.get(channel, self.level)


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """The active config; read from the environment on first use."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
    return _config


def set_config(config: LogConfig) -> None:
    """Replace the active config. Call reset_loggers() so channels pick it up."""
    global _config
    _config = config
