"""Build configuration loading.

Loads a BuildConfig from a YAML or JSON file. Parse and validation
failures are reported as InvalidConfig.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from buildstash.builds.schema import BuildConfig
from buildstash.errors import InvalidConfig


def _load_mapping(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfig(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def load_build_config(path: Path) -> BuildConfig:
    """Load a build configuration file.

    Args:
        path: Path to a .yaml, .yml or .json file.

    Returns:
        Parsed BuildConfig.

    Raises:
        InvalidConfig: If the file cannot be parsed or fails validation.
    """
    try:
        data = _load_mapping(path)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise InvalidConfig(f"Cannot read build config {path}: {e}") from e

    try:
        return BuildConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfig(f"Invalid build config {path}: {e}") from e


__all__ = ["load_build_config"]
