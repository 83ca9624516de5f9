"""Core utilities and configuration."""

from faktory.core.config import get_settings, load_agent_config, load_toml

__all__ = [
    "load_toml",
    "load_agent_config",
    "get_settings",
]
