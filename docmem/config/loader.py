"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers win):

    1. config/config.yaml  -- tuning defaults checked into the repo
    2. .env file           -- local developer overrides
    3. environment vars    -- deploy-time values

``load_config()`` reads the YAML file, then deep-merges the values that
:class:`Settings` resolved from the environment on top of it.
"""

from pathlib import Path

import yaml

from docmem.config.settings import Settings


def load_config(path: str | None = None, settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  Defaults to
              ``settings.config_path``.
        settings: Resolved settings; a fresh :class:`Settings` is read
                  from the environment when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "storage": {
            "backend": settings.storage_backend,
            "root": settings.storage_root,
            "bucket": settings.storage_bucket,
            "base_url": settings.storage_base_url,
            "public_base_url": settings.storage_public_base_url,
        },
        "database": {
            "path": settings.database_path,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def section(config: dict, name: str) -> dict:
    """Return a config section, or an empty dict when it is missing."""
    value = config.get(name)
    return value if isinstance(value, dict) else {}


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
