"""Shared utilities for all CLI command modules.

Provides the Rich console instance and the option defaults used across
every command group.
"""

from __future__ import annotations

import stat
from typing import Any, Dict

from rich.console import Console

from .. import SAFEVFS_HOME

console = Console()


def mode_string(attrs: Dict[str, Any]) -> str:
    """Render ``st_mode`` the way ``ls -l`` does (``drwxr-xr-x``)."""
    return stat.filemode(attrs.get("st_mode", 0))


__all__ = ["SAFEVFS_HOME", "console", "mode_string"]
