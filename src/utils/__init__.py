"""Utility modules."""

from .config_loader import ConfigLoader, load_config, parse_overrides
from .logger import setup_logger, get_logger

__all__ = ["ConfigLoader", "load_config", "parse_overrides", "setup_logger", "get_logger"]
