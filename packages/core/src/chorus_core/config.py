from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from chorus_core.throttle import ThrottlerOptions

logger = logging.getLogger(__name__)

# Defaults mirror the desktop app: a burst limiter and a sustained limiter.
DEFAULT_THROTTLERS: list[dict] = [
    {"name": "short", "limit": 100, "ttl": 1000, "block_duration": 0},
    {"name": "medium", "limit": 500, "ttl": 10000, "block_duration": 0},
]

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "model_name": None,  # None = the provider's default model
    "max_workers": 4,
    "max_retries": 3,
    "max_chars_per_diff": 60000,
    "store": "sqlite",
    "store_path": ".chorus.db",
    "history_max_entries": 500,
    "log_dir": ".chorus/logs",
    "throttlers": DEFAULT_THROTTLERS,
}


def load_config(config_path: str = ".chorus.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .chorus.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "throttlers": [dict(t) for t in DEFAULT_THROTTLERS]}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(file_config).__name__}")
        config.update(file_config)
        logger.debug("Loaded configuration from %s", config_path)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def throttlers_from_config(config: dict) -> list[ThrottlerOptions]:
    """Build the rate limiter's throttlers from the ``throttlers`` config list."""
    throttlers = []
    for entry in config.get("throttlers") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"Each throttler must be a mapping, got {entry!r}")
        throttlers.append(
            ThrottlerOptions(
                name=entry.get("name"),
                limit=int(entry.get("limit", 100)),
                ttl=int(entry.get("ttl", 60000)),
                block_duration=int(entry.get("block_duration", 0)),
            )
        )
    return throttlers
