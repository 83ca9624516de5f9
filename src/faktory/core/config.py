"""Configuration loading utilities."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Optional

# tomllib is available in Python 3.11+, use tomli for earlier versions
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from faktory.models.config import AgentConfig


def load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file and return its contents as a dictionary.

    Args:
        path: Path to the TOML file

    Returns:
        Dictionary with TOML contents

    Raises:
        FileNotFoundError: If file doesn't exist
        tomllib.TOMLDecodeError: If file is invalid TOML
    """
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_agent_config(path: Optional[Path] = None, **overrides: Any) -> AgentConfig:
    """Build the agent configuration.

    Values come from the environment, then the ``[agent]`` table of an
    optional TOML file, then explicit overrides (``None`` overrides are
    ignored so CLI options can be passed straight through).

    Example TOML format:
        [agent]
        tick_interval_ms = 15000
        min_confidence = 75
        max_concurrent_analyses = 3

    Raises:
        pydantic.ValidationError: If any value is out of range
    """
    from dotenv import load_dotenv
    load_dotenv()  # Ensure .env is loaded

    values: dict[str, Any] = {}
    if path is not None:
        data = load_toml(path)
        values.update(data.get("agent", data))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return AgentConfig(**values)


# Singleton settings instance
_settings: AgentConfig | None = None


def get_settings() -> AgentConfig:
    """Get or create the settings singleton.

    This ensures we only load settings once and reuse them.
    """
    global _settings
    if _settings is None:
        _settings = load_agent_config()
    return _settings
