"""
Configuration management for Wallet Sentinel.

Loads and validates settings from environment variables and the optional
.env file. Exposes a single source of truth for all engine configuration.
"""

from wallet_sentinel.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
