"""
Path routing -- which namespace a virtual path belongs to, and what
may be done there.

Virtual layout::

    /
    ├── public/     drive items with isPrivate=false (subfolders only at its root)
    ├── private/    drive items with isPrivate=true
    ├── outside/    registered external domains, one folder per service.longname
    └── dns/        DNS long names, each listing its services as symlinks

Only ``public`` and ``private`` accept writes. ``outside`` accepts
mkdir/rmdir of registry entries directly under it. ``dns`` is read-only.
"""

from __future__ import annotations

import errno
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .errors import fs_error
from .models import RootPath


class Namespace(str, Enum):
    """Top-level roots presented at the mount's root."""

    PUBLIC = "public"
    PRIVATE = "private"
    OUTSIDE = "outside"
    DNS = "dns"

    @property
    def is_plain(self) -> bool:
        """Backed by the drive (as opposed to the external registry)."""
        return self in (Namespace.PUBLIC, Namespace.PRIVATE)

    @property
    def is_private(self) -> bool:
        return self is Namespace.PRIVATE

    @property
    def other(self) -> "Namespace":
        """The opposite side of the public/private split."""
        if self is Namespace.PUBLIC:
            return Namespace.PRIVATE
        if self is Namespace.PRIVATE:
            return Namespace.PUBLIC
        raise ValueError(f"{self.value} has no counterpart")


NAMESPACE_NAMES = [ns.value for ns in Namespace]

# Plain namespaces share the drive; the settings record lives in the app root.
DRIVE_ROOT = RootPath.DRIVE
SETTINGS_ROOT = RootPath.APP

WRITE_MODES = frozenset({"w", "rw", "a"})
PRELOAD_MODES = frozenset({"rw", "a"})

PUBLIC_SYMLINK_PREFIX = ".SAFE_SYMLINK_PUBLIC."
PRIVATE_SYMLINK_PREFIX = ".SAFE_SYMLINK."

CHECK_FILE = "/._rfuse_check"


# ---------------------------------------------------------------------------
# Path parsing
# ---------------------------------------------------------------------------


def parse_path(path: str) -> Tuple[str, ...]:
    """Split a virtual path into its non-empty components.

    Args:
        path: POSIX path string (e.g. ``/public/a/b.txt``).

    Returns:
        Tuple of path components with empty strings removed.
    """
    return tuple(p for p in path.strip("/").split("/") if p)


def join_path(*parts: Optional[str]) -> str:
    """Join path fragments into a normalised absolute path."""
    segments = []
    for part in parts:
        if part:
            segments.extend(parse_path(part))
    return "/" + "/".join(segments)


@dataclass(frozen=True)
class VirtualPath:
    """A virtual path resolved against the namespace layout.

    ``parent`` and ``relative`` are namespace-relative: for
    ``/public/a/b.txt`` the parent is ``/a`` and the relative path
    ``/a/b.txt``.
    """

    raw: str
    namespace: Optional[Namespace]
    parent: Optional[str]
    name: Optional[str]

    @property
    def is_root(self) -> bool:
        return self.namespace is None

    @property
    def is_namespace_root(self) -> bool:
        return self.namespace is not None and self.name is None

    @property
    def relative(self) -> str:
        """Namespace-relative path of the entry itself."""
        return join_path(self.parent, self.name)

    @property
    def depth(self) -> int:
        """Number of components below the namespace root."""
        return len(parse_path(self.relative))


def route(path: str) -> VirtualPath:
    """Resolve a virtual path to ``(namespace, parent, name)``.

    Args:
        path: Virtual filesystem path.

    Returns:
        The resolved VirtualPath. ``/`` resolves with no namespace.

    Raises:
        OSError: ``EBADF`` if the first segment is not a namespace.
    """
    parts = parse_path(path)
    if not parts:
        return VirtualPath(raw=path, namespace=None, parent=None, name=None)

    try:
        namespace = Namespace(parts[0])
    except ValueError:
        raise fs_error(errno.EBADF, path, "Unknown namespace") from None

    rest = parts[1:]
    if not rest:
        return VirtualPath(raw=path, namespace=namespace, parent=None, name=None)
    return VirtualPath(
        raw=path,
        namespace=namespace,
        parent=join_path(*rest[:-1]),
        name=rest[-1],
    )


def parse_domain(name: str) -> Tuple[str, str]:
    """Split an external-domain folder name into ``(service, long_name)``.

    Raises:
        OSError: ``EINVAL`` unless the name is exactly two dot-separated tokens.
    """
    items = name.split(".")
    if len(items) != 2 or not all(items):
        raise fs_error(errno.EINVAL, name, "Expected <service>.<longname>")
    return items[0], items[1]


def symlink_backend_name(namespace: Namespace, name: str) -> str:
    """Name under which a symlink called ``name`` is stored on the network."""
    if namespace is Namespace.PUBLIC:
        return PUBLIC_SYMLINK_PREFIX + name
    return PRIVATE_SYMLINK_PREFIX + name


def split_symlink_name(backend_name: str) -> Optional[Tuple[Namespace, str]]:
    """Recognise a reserved symlink file name.

    Returns:
        ``(namespace, display_name)`` for a symlink file, else None.
    """
    if backend_name.startswith(PUBLIC_SYMLINK_PREFIX):
        return Namespace.PUBLIC, backend_name[len(PUBLIC_SYMLINK_PREFIX):]
    if backend_name.startswith(PRIVATE_SYMLINK_PREFIX):
        return Namespace.PRIVATE, backend_name[len(PRIVATE_SYMLINK_PREFIX):]
    return None


# ---------------------------------------------------------------------------
# Legality gates
# ---------------------------------------------------------------------------


def can_write(path: str) -> bool:
    """Whether files under ``path`` may be written at all."""
    parts = parse_path(path)
    return bool(parts) and parts[0] in (Namespace.PUBLIC.value, Namespace.PRIVATE.value)


def can_delete(path: str) -> bool:
    """Whether entries under ``path`` may be deleted."""
    return can_write(path)


def can_mkdir(path: str) -> bool:
    """Whether a directory may be created at ``path``."""
    parts = parse_path(path)
    if len(parts) < 2:
        return False
    if parts[0] in (Namespace.PUBLIC.value, Namespace.PRIVATE.value):
        return True
    return parts[0] == Namespace.OUTSIDE.value and len(parts) == 2


def can_rmdir(path: str) -> bool:
    """Whether the directory at ``path`` may be removed."""
    return can_mkdir(path)


def check_open(vpath: VirtualPath, mode: str) -> None:
    """Reject opening ``vpath`` in ``mode`` where the namespace forbids it.

    Raises:
        OSError: ``EPERM`` for writes outside the plain namespaces or at
            the exact ``/public`` root; ``EISDIR`` when opening a
            namespace root or ``/``.
    """
    if vpath.name is None:
        raise fs_error(errno.EISDIR, vpath.raw)

    if mode not in WRITE_MODES:
        return

    if not vpath.namespace.is_plain:
        raise fs_error(errno.EPERM, vpath.raw, "Read-only folder")

    if vpath.namespace is Namespace.PUBLIC and vpath.parent == "/":
        raise fs_error(errno.EPERM, vpath.raw, "Public folder can only contain subfolders")


def check_symlink(vpath: VirtualPath) -> None:
    """Reject symlink creation outside the namespaces that allow it."""
    if vpath.name is None or vpath.namespace not in (
        Namespace.PUBLIC,
        Namespace.PRIVATE,
        Namespace.DNS,
    ):
        raise fs_error(errno.EPERM, vpath.raw)
