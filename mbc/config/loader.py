import yaml
from pathlib import Path
from typing import Optional
from pydantic import ValidationError

from mbc.domain.errors import ConfigurationError
from .models import AppConfig


def load_config(config_path: Optional[Path]) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model.

    ``None`` means "no config file": built-in defaults, including the default
    profile table. A missing or malformed file is a ConfigurationError.
    """
    if config_path is None:
        return AppConfig()
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Cannot parse config file {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping at the top level")

    # Profiles may be written as a mapping keyed by profile name
    profiles = data.get("profiles")
    if isinstance(profiles, dict):
        data["profiles"] = [{"name": name, **(fields or {})} for name, fields in profiles.items()]

    try:
        return AppConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}:\n{exc}") from exc
