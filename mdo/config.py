from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config_models import RunConfig
from .errors import MdoError
from .settings import Settings, settings


class ConfigError(MdoError):
    pass


def default_config_path(cfg: Settings = settings, profile: str = "combined") -> Path:
    return Path(cfg.home_dir) / f"config.{profile}.yaml"


def parse_config(data: dict[str, Any] | None, profile: str | None = None) -> RunConfig:
    """Validate an already-loaded mapping. ``profile`` overrides the file's value."""
    data = dict(data or {})
    if profile:
        data["profile"] = profile
    try:
        return RunConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}") from e


def load_config(path: str | Path, profile: str | None = None) -> RunConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    return parse_config(data, profile=profile)
