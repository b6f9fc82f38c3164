# loader.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, List

import yaml

from .errors import ConfigError, Problem
from .schema import BuildConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAMES = ("cloudbuild.yaml", "cloudbuild.yml", "cloudbuild.json")
SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")


def read_config_mapping(path: str | Path) -> dict[str, Any]:
    """
    Read a config file into a plain mapping.

    YAML for .yaml/.yml, JSON for .json. Empty or non-mapping documents
    are rejected.
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Build config not found: {config_path}")
    if config_path.suffix not in SUPPORTED_SUFFIXES:
        raise ConfigError(
            [Problem("", f"unsupported file type {config_path.suffix!r}, expected one of {', '.join(SUPPORTED_SUFFIXES)}")],
            source=str(config_path),
        )

    text = config_path.read_text(encoding="utf-8")
    try:
        if config_path.suffix == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError([Problem("", f"could not parse file: {exc}")], source=str(config_path)) from exc

    if payload is None:
        raise ConfigError([Problem("", "file is empty")], source=str(config_path))
    if not isinstance(payload, Mapping):
        raise ConfigError(
            [Problem("", f"top level must be a mapping, got {type(payload).__name__}")],
            source=str(config_path),
        )
    return dict(payload)


def load_config(path: str | Path) -> BuildConfig:
    """Load and schema-check a build config file."""
    data = read_config_mapping(path)
    config = BuildConfig.from_mapping(data, source=str(path))
    logger.debug("Loaded %d step(s) from %s", len(config.steps), path)
    return config


def find_config_files(directory: str | Path = ".") -> List[Path]:
    """Default-named config files present in `directory`."""
    base = Path(directory)
    return [base / name for name in DEFAULT_CONFIG_NAMES if (base / name).is_file()]
