"""Configuration loading utilities."""

import copy
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

# Values used when a config file leaves a key out
DEFAULT_CONFIG: Dict[str, Any] = {
    "labels": [],
    "postprocess": {
        "confidence_threshold": 0.3,
        "iou_threshold": 0.5,
        "class_agnostic": True,
        "max_detections": None,
        "allowed_classes": None,
    },
    "logging": {
        "level": "INFO",
        "log_file": None,
    },
}

INCLUDE_PREFIX = "!include "


class ConfigLoader:
    """Load and merge YAML configurations."""

    def __init__(self, config_dir: Optional[Union[str, Path]] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory searched for bare file names.
        """
        self.config_dir = Path(config_dir) if config_dir else Path("configs")
        self._cache: Dict[str, Dict[str, Any]] = {}

    def resolve(self, config_path: Union[str, Path]) -> Path:
        """
        Find a config file.

        Absolute paths and relative paths that exist are used as given;
        anything else is looked up inside config_dir.
        """
        config_path = Path(config_path)
        if config_path.is_absolute() or config_path.exists():
            return config_path
        return self.config_dir / config_path

    def load(
        self,
        config_path: Union[str, Path],
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file.
            use_cache: Whether to use cached config.

        Returns:
            Configuration dictionary (a copy; safe to modify).

        Raises:
            FileNotFoundError: Config file does not exist.
            ValueError: Top level of the file is not a mapping.
        """
        path = self.resolve(config_path)
        cache_key = str(path.resolve())

        if use_cache and cache_key in self._cache:
            return copy.deepcopy(self._cache[cache_key])

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Config {path} must contain a mapping, got {type(config).__name__}")

        config = self._process_includes(config, path.parent)

        if use_cache:
            self._cache[cache_key] = config

        return copy.deepcopy(config)

    def _process_includes(self, config: Any, base_dir: Path) -> Any:
        """
        Replace "!include <file>" string values with that file's content.

        Useful for sharing one label list between several configs:

            labels: "!include coco_labels.yaml"
        """
        if not isinstance(config, dict):
            return config

        result = {}
        for key, value in config.items():
            if isinstance(value, str) and value.startswith(INCLUDE_PREFIX):
                include_path = base_dir / value[len(INCLUDE_PREFIX):].strip()
                with open(include_path, "r", encoding="utf-8") as f:
                    result[key] = yaml.safe_load(f)
            elif isinstance(value, dict):
                result[key] = self._process_includes(value, base_dir)
            else:
                result[key] = value

        return result

    @staticmethod
    def merge(
        base: Dict[str, Any],
        override: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Deep merge two configurations; override wins on conflicts.
        """
        result = copy.deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigLoader.merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    def save(
        self,
        config: Dict[str, Any],
        path: Union[str, Path],
    ) -> None:
        """
        Save configuration to YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(config, f, default_flow_style=False, sort_keys=False)

    def clear_cache(self) -> None:
        """Clear configuration cache."""
        self._cache.clear()


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Load a configuration on top of DEFAULT_CONFIG.

    Args:
        config_path: Path to config file (None = defaults only).
        overrides: Optional overrides to apply last.

    Returns:
        Configuration dictionary.
    """
    loader = ConfigLoader()
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is not None:
        config = loader.merge(config, loader.load(config_path))

    if overrides:
        config = loader.merge(config, overrides)

    return config


def get_nested(
    config: Dict[str, Any],
    key: str,
    default: Any = None,
) -> Any:
    """
    Get nested config value using dot notation.

    Args:
        config: Configuration dictionary.
        key: Dot-separated key (e.g., 'postprocess.iou_threshold').
        default: Default value if key not found.

    Returns:
        Config value or default.
    """
    value = config

    for k in key.split("."):
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default

    return value


def set_nested(
    config: Dict[str, Any],
    key: str,
    value: Any,
) -> None:
    """
    Set nested config value using dot notation, creating sections as needed.
    """
    keys = key.split(".")
    current = config

    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]

    current[keys[-1]] = value


def parse_overrides(assignments: Iterable[str]) -> Dict[str, Any]:
    """
    Turn "a.b=value" strings into a nested override dictionary.

    Values are parsed as YAML, so "0.4" becomes a float, "null" None and
    "[person, car]" a list.

    Example:
        >>> parse_overrides(["postprocess.iou_threshold=0.4"])
        {'postprocess': {'iou_threshold': 0.4}}
    """
    overrides: Dict[str, Any] = {}

    for assignment in assignments:
        key, sep, raw = assignment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Override must look like key=value, got {assignment!r}")
        set_nested(overrides, key, yaml.safe_load(raw))

    return overrides
