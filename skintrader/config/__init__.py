"""TOML configuration with environment overrides."""

from __future__ import annotations

from skintrader.config.loader import ConfigError, ConfigLoader

__all__ = ["ConfigError", "ConfigLoader"]
