"""Configuration loading utilities."""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from iclockhub.config.schema import Config
from iclockhub.utils.helpers import ensure_dir, get_data_path


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_data_path() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file as camelCase JSON."""
    path = config_path or get_config_path()
    ensure_dir(path.parent)
    data = convert_to_camel(config.model_dump())
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def find_unknown_paths(data: Any, prefix: str = "") -> list[str]:
    """List dotted paths in raw config data that the schema does not define."""
    known = convert_to_camel(Config().model_dump())
    return _unknown_paths(data, known, prefix)


def _unknown_paths(data: Any, known: Any, prefix: str) -> list[str]:
    if not isinstance(data, dict) or not isinstance(known, dict):
        return []
    out: list[str] = []
    for key, value in data.items():
        camel = snake_to_camel(str(key))
        path = f"{prefix}.{key}" if prefix else str(key)
        if camel not in known:
            out.append(path)
            continue
        out.extend(_unknown_paths(value, known[camel], path))
    return out


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
