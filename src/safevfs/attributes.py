"""
Attribute resolution -- existence, size, timestamps and stat dicts.

Every answer comes from the directory cache. A node that is not valid
is relisted through the Lister before it is consulted.
"""

from __future__ import annotations

import errno
import logging
import os
import stat
import time
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .cache import CacheTree
from .errors import fs_error
from .lister import Lister
from .models import CacheEntry, EntryKind
from .router import (
    CHECK_FILE,
    NAMESPACE_NAMES,
    Namespace,
    can_mkdir,
    can_write,
    parse_path,
    route,
)

logger = logging.getLogger("safevfs.attributes")

Times = Tuple[int, int, int]
ZERO_TIMES: Times = (0, 0, 0)
_FRACTION = re.compile(r"\.(\d+)")


def _parse_timestamp(value: Optional[str]) -> int:
    """Convert an ISO-8601 / RFC 3339 timestamp to integer POSIX seconds.

    Raises:
        ValueError: If the value is missing or malformed.
    """
    if not value:
        raise ValueError("missing timestamp")
    value = value.strip()
    if value[-1:] in ("Z", "z"):
        value = value[:-1] + "+00:00"
    # fromisoformat before Python 3.11 only takes 3 or 6 fraction digits.
    value = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], value, count=1)
    return int(datetime.fromisoformat(value).timestamp())


def _dir_stat(writable: bool, times: Times) -> Dict[str, Any]:
    """Build a stat dict for a directory.

    ``st_nlink`` is fixed at 1; ``find`` and friends stop trusting the
    link count as a subdirectory counter when it is 1.
    """
    atime, mtime, ctime = times
    return {
        "st_mode": stat.S_IFDIR | (0o777 if writable else 0o555),
        "st_nlink": 1,
        "st_uid": os.getuid(),
        "st_gid": os.getgid(),
        "st_size": 0,
        "st_atime": atime,
        "st_mtime": mtime,
        "st_ctime": ctime,
    }


def _file_stat(
    size: int,
    writable: bool,
    executable: bool,
    symlink: bool,
    times: Times,
) -> Dict[str, Any]:
    """Build a stat dict for a regular file or symlink."""
    mode = 0o444
    if writable:
        mode |= 0o222
    if executable:
        mode |= 0o111
    atime, mtime, ctime = times
    return {
        "st_mode": (stat.S_IFLNK if symlink else stat.S_IFREG) | mode,
        "st_nlink": 1,
        "st_uid": os.getuid(),
        "st_gid": os.getgid(),
        "st_size": size,
        "st_atime": atime,
        "st_mtime": mtime,
        "st_ctime": ctime,
    }


class AttributeResolver:
    """Answers metadata queries from the cache trees.

    Args:
        caches: One CacheTree per namespace.
        lister: Used to refresh invalid nodes.
    """

    def __init__(self, caches: Dict[Namespace, CacheTree], lister: Lister) -> None:
        self._caches = caches
        self._lister = lister

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def entry(self, path: str, kind: EntryKind) -> Optional[CacheEntry]:
        """Return the cached entry of ``kind`` at ``path``, listing if needed."""
        vpath = route(path)
        if vpath.name is None:
            return None
        self._lister.ensure_listed(vpath.namespace, vpath.parent)
        return self._caches[vpath.namespace].get(kind, vpath.parent, vpath.name)

    def file_entry(self, path: str) -> Optional[CacheEntry]:
        """File or symlink entry at ``path`` (symlinks are files on the network)."""
        return self.entry(path, EntryKind.FILE) or self.entry(path, EntryKind.SYMLINK)

    def is_directory(self, path: str) -> bool:
        parts = parse_path(path)
        if len(parts) <= 1:
            return not parts or parts[0] in NAMESPACE_NAMES
        return self.entry(path, EntryKind.FOLDER) is not None

    def is_file(self, path: str) -> bool:
        if len(parse_path(path)) <= 1:
            return False
        return self.file_entry(path) is not None

    def is_symlink(self, path: str) -> bool:
        if len(parse_path(path)) <= 1:
            return False
        return self.entry(path, EntryKind.SYMLINK) is not None

    def is_executable(self, path: str) -> bool:
        entry = self.file_entry(path)
        return bool(entry and entry.executable)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def times(self, path: str) -> Times:
        """Return ``(atime, mtime, ctime)`` in POSIX seconds.

        Missing or malformed timestamps yield ``(0, 0, 0)``.
        """
        if len(parse_path(path)) <= 1:
            return ZERO_TIMES
        entry = self.file_entry(path) or self.entry(path, EntryKind.FOLDER)
        if entry is None:
            return ZERO_TIMES
        try:
            modified = _parse_timestamp(entry.modified_on)
            created = _parse_timestamp(entry.created_on)
        except ValueError:
            logger.debug("Unparseable timestamps on %s", path)
            return ZERO_TIMES
        return modified, modified, created

    def size(self, path: str) -> int:
        """Return the cached size of the file or symlink at ``path``.

        Raises:
            OSError: ``ENOENT`` if there is no such file or symlink.
        """
        entry = self.file_entry(path) if len(parse_path(path)) > 1 else None
        if entry is None:
            raise fs_error(errno.ENOENT, path)
        return entry.size

    def attributes(self, path: str) -> Dict[str, Any]:
        """Return stat-like attributes for ``path``.

        Raises:
            OSError: ``ENOENT`` if the path does not exist.
        """
        if self.is_directory(path):
            probe = ("" if parse_path(path) == () else path.rstrip("/")) + CHECK_FILE
            writable = can_mkdir(probe) or can_write(probe)
            return _dir_stat(writable, self.times(path))

        entry = self.file_entry(path) if len(parse_path(path)) > 1 else None
        if entry is None:
            raise fs_error(errno.ENOENT, path)
        return _file_stat(
            size=entry.size,
            writable=can_write(path),
            executable=entry.executable,
            symlink=entry.kind is EntryKind.SYMLINK,
            times=self.times(path),
        )

    def staged_attributes(self, path: str, size: int) -> Dict[str, Any]:
        """Attributes of a file that so far only exists in an open handle."""
        now = int(time.time())
        return _file_stat(
            size=size,
            writable=can_write(path),
            executable=False,
            symlink=False,
            times=(now, now, now),
        )
