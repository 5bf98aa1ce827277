"""Configuration discovery and parsing helpers."""

from procward.lib.config.settings import (
    ProcwardConfig,
    get_config,
    load_config,
    reset_config_cache,
)

__all__ = ["ProcwardConfig", "get_config", "load_config", "reset_config_cache"]
