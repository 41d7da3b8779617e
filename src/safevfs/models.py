"""
Pydantic models for everything that crosses the backend boundary.

Listings arrive from the launcher as camelCase JSON; they are parsed
into these models once and the rest of the adapter only ever sees
snake_case attributes.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RootPath(str, Enum):
    """Backend root selector."""

    APP = "app"
    DRIVE = "drive"


class EntryKind(str, Enum):
    """Bucket of a directory cache node an entry lives in."""

    FILE = "file"
    FOLDER = "folder"
    SYMLINK = "symlink"


class BackendItem(BaseModel):
    """A file or directory as reported by a backend listing."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    size: int = 0
    created_on: Optional[str] = Field(default=None, alias="createdOn")
    modified_on: Optional[str] = Field(default=None, alias="modifiedOn")
    is_private: Optional[bool] = Field(default=None, alias="isPrivate")
    metadata: Optional[str] = None


class DirectoryListing(BaseModel):
    """Response of a directory listing call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    info: BackendItem = Field(default_factory=lambda: BackendItem(name=""))
    files: list[BackendItem] = Field(default_factory=list)
    sub_directories: list[BackendItem] = Field(
        default_factory=list, alias="subDirectories"
    )


class CacheEntry(BaseModel):
    """An entry held in a directory cache node.

    ``name`` is the display name (symlink prefixes stripped);
    ``backend_name`` is what the object is called on the network.
    """

    name: str
    backend_name: str
    kind: EntryKind = EntryKind.FILE
    size: int = 0
    created_on: Optional[str] = None
    modified_on: Optional[str] = None
    is_private: bool = False
    executable: bool = False
    service_name: Optional[str] = None
    long_name: Optional[str] = None

    @classmethod
    def from_item(
        cls,
        item: BackendItem,
        kind: EntryKind = EntryKind.FILE,
        name: Optional[str] = None,
        is_private: bool = False,
    ) -> "CacheEntry":
        """Build a cache entry from a backend listing item."""
        return cls(
            name=name if name is not None else item.name,
            backend_name=item.name,
            kind=kind,
            size=item.size,
            created_on=item.created_on,
            modified_on=item.modified_on,
            is_private=is_private,
        )


class Settings(BaseModel):
    """Persisted external-domain registry (``settings.json``)."""

    alien_items: list[str] = Field(default_factory=list)


class AppInfo(BaseModel):
    """Identity the adapter presents to the launcher when authorising."""

    name: str = "SAFE Virtual FS"
    version: str = "0.2.0"
    vendor: str = "safevfs"
    id: str = "safe-vfs"
    permissions: list[str] = Field(default_factory=lambda: ["SAFE_DRIVE_ACCESS"])


class SafeVFSConfig(BaseModel):
    """Runtime configuration loaded from ``config/config.yaml``."""

    launcher_url: str = "http://localhost:8100"
    app: AppInfo = Field(default_factory=AppInfo)
    request_timeout: float = 30.0
    spool_max_bytes: int = 8 * 1024 * 1024
    mount_point: Path = Path("~/safe-disk")
