"""Configuration management for shellbridge.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for deployment-specific values
like the listening port.
"""

from shellbridge.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
