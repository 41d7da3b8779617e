"""
Configuration loading for safevfs.

The config lives in ``<home>/config/config.yaml``; every key is
optional and missing ones take the SafeVFSConfig defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml

from . import SAFEVFS_HOME
from .models import SafeVFSConfig

logger = logging.getLogger("safevfs.config")


def resolve_home(home: Optional[Path] = None) -> Path:
    """Return the expanded safevfs home directory."""
    return (home or Path(SAFEVFS_HOME)).expanduser()


def config_path(home: Optional[Path] = None) -> Path:
    return resolve_home(home) / "config" / "config.yaml"


def load_config(home: Optional[Path] = None) -> SafeVFSConfig:
    """Load the configuration from disk.

    Args:
        home: Override home directory. Defaults to ``SAFEVFS_HOME``.

    Returns:
        SafeVFSConfig loaded from config.yaml, or defaults.
    """
    config_file = config_path(home)
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return SafeVFSConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config: %s, using defaults", exc)
    return SafeVFSConfig()


def write_config(config: SafeVFSConfig, home: Optional[Path] = None) -> Path:
    """Write ``config`` to ``<home>/config/config.yaml``.

    Returns:
        Path of the written file.
    """
    config_file = config_path(home)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    config_file.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    logger.info("Wrote config to %s", config_file)
    return config_file
