"""
Mutations -- mkdir, rmdir, rename, symlink, readlink, delete, touch.

Each mutation issues its backend calls first and then invalidates the
cache node(s) it touched. Because one drive listing repopulates both
the ``public`` and the ``private`` tree, drive mutations invalidate the
affected directory in both.

Invariants enforced here that the backend does not enforce:

* no directory name exists under the same parent in both ``public``
  and ``private``;
* ``outside`` only holds registry folders directly under its root;
* ``dns`` is read-only apart from symlinks.
"""

from __future__ import annotations

import errno
import logging
from typing import Dict

from .attributes import AttributeResolver
from .backend import EMPTY_BODY, StorageBackend
from .cache import CacheTree
from .errors import fs_error
from .lister import Lister
from .router import (
    DRIVE_ROOT,
    NAMESPACE_NAMES,
    Namespace,
    VirtualPath,
    can_delete,
    check_symlink,
    join_path,
    parse_domain,
    parse_path,
    route,
    symlink_backend_name,
)
from .settings_store import SettingsStore

logger = logging.getLogger("safevfs.mutations")


class MutationCoordinator:
    """Implements every namespace-changing operation.

    Args:
        backend: Storage client.
        caches: One CacheTree per namespace.
        lister: Used for forced relisting.
        resolver: Used for existence checks.
        settings: External-domain registry.
        mount_point: Absolute mount point; symlink targets are stored
            relative to it.
    """

    def __init__(
        self,
        backend: StorageBackend,
        caches: Dict[Namespace, CacheTree],
        lister: Lister,
        resolver: AttributeResolver,
        settings: SettingsStore,
        mount_point: str = "",
    ) -> None:
        self._backend = backend
        self._caches = caches
        self._lister = lister
        self._resolver = resolver
        self._settings = settings
        self._mount_point = mount_point.rstrip("/")

    # ------------------------------------------------------------------
    # Cache bookkeeping
    # ------------------------------------------------------------------

    def invalidate(self, namespace: Namespace, rel: str) -> None:
        """Invalidate ``rel`` in ``namespace`` (both drive trees for drive paths)."""
        if namespace in (Namespace.OUTSIDE, Namespace.DNS):
            self._caches[namespace].invalidate(rel)
            return
        for ns in (Namespace.PUBLIC, Namespace.PRIVATE):
            self._caches[ns].invalidate(rel)

    @staticmethod
    def _require_entry(vpath: VirtualPath) -> None:
        if vpath.name is None:
            raise fs_error(errno.EPERM, vpath.raw, "Operation not permitted at a namespace root")

    # ------------------------------------------------------------------
    # Directories
    # ------------------------------------------------------------------

    def mkdir(self, path: str) -> None:
        """Create a directory, or register an external domain under ``/outside``.

        Raises:
            OSError: ``EPERM`` at ``/``, a namespace root, under ``dns``,
                deeper than one level under ``outside``, or when the name
                already exists as a directory in the opposite namespace;
                ``EINVAL`` for a malformed domain name; ``ENOENT`` if the
                domain does not resolve; ``EEXIST`` if it already exists.
        """
        vpath = route(path)
        self._require_entry(vpath)
        namespace = vpath.namespace

        if namespace is Namespace.OUTSIDE:
            if vpath.parent != "/":
                raise fs_error(errno.EPERM, path, "Domains can only be added at /outside")
            service_name, long_name = parse_domain(vpath.name)
            if vpath.name in self._settings.alien_items():
                raise fs_error(errno.EEXIST, path)
            self._backend.get_home_directory(long_name, service_name)
            self._settings.add(vpath.name)
            self.invalidate(namespace, "/")
            self._lister.refresh(namespace, "/")
            logger.info("Registered external domain %s", vpath.name)
            return

        if not namespace.is_plain:
            raise fs_error(errno.EPERM, path, "Read-only folder")

        if self._resolver.is_directory(path) or self._resolver.is_file(path):
            raise fs_error(errno.EEXIST, path)
        twin = join_path(namespace.other.value, vpath.relative)
        if self._resolver.is_directory(twin):
            raise fs_error(
                errno.EPERM, path, f"There's a folder with the same name in /{namespace.other.value}"
            )

        self._backend.create_directory(vpath.relative, DRIVE_ROOT, namespace.is_private)
        self.invalidate(namespace, vpath.parent)
        self.invalidate(namespace, vpath.relative)
        logger.info("Created directory %s", path)

    def rmdir(self, path: str) -> None:
        """Remove an empty directory, or unregister an external domain.

        Raises:
            OSError: ``EPERM`` where removal is not allowed, ``ENOENT`` if
                the directory does not exist, ``ENOTEMPTY`` if it still
                has children.
        """
        vpath = route(path)
        self._require_entry(vpath)
        namespace = vpath.namespace

        if namespace is Namespace.OUTSIDE:
            if vpath.parent != "/":
                raise fs_error(errno.EPERM, path)
            self._settings.remove(vpath.name)
            self.invalidate(namespace, "/")
            self.invalidate(namespace, vpath.relative)
            logger.info("Unregistered external domain %s", vpath.name)
            return

        if not namespace.is_plain:
            raise fs_error(errno.EPERM, path, "Read-only folder")

        if not self._resolver.is_directory(path):
            raise fs_error(errno.ENOENT, path)
        # One drive directory feeds both plain trees; either side counts.
        for ns in (Namespace.PUBLIC, Namespace.PRIVATE):
            self._lister.ensure_listed(ns, vpath.relative)
            if self._caches[ns].names(vpath.relative):
                raise fs_error(errno.ENOTEMPTY, path)

        self._backend.delete_directory(vpath.relative, DRIVE_ROOT)
        self.invalidate(namespace, vpath.parent)
        self.invalidate(namespace, vpath.relative)
        logger.info("Removed directory %s", path)

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    def rename(self, from_path: str, to_path: str) -> None:
        """Move and/or rename a file, symlink or directory.

        Raises:
            OSError: ``EPERM`` across namespaces, outside the drive
                namespaces, or when a directory would collide with a
                same-named directory in the opposite namespace;
                ``ENOENT`` if the source does not exist.
        """
        src, dst = route(from_path), route(to_path)
        self._require_entry(src)
        self._require_entry(dst)
        if src.namespace is not dst.namespace:
            raise fs_error(errno.EPERM, to_path, "Moving between namespaces is not supported")
        namespace = src.namespace
        if not namespace.is_plain:
            raise fs_error(errno.EPERM, to_path, "Read-only folder")
        if src.relative == dst.relative:
            return

        is_link = self._resolver.is_symlink(from_path)
        is_directory = self._resolver.is_directory(from_path)
        if not (is_directory or is_link or self._resolver.is_file(from_path)):
            raise fs_error(errno.ENOENT, from_path)

        from_name, to_name = src.name, dst.name
        if is_link:
            from_name = symlink_backend_name(namespace, from_name)
            to_name = symlink_backend_name(namespace, to_name)

        if is_directory:
            twin = join_path(namespace.other.value, dst.relative)
            if self._resolver.is_directory(twin):
                raise fs_error(
                    errno.EPERM,
                    to_path,
                    f"There's a folder with the same name in /{namespace.other.value}",
                )
        elif self._resolver.is_file(to_path):
            # POSIX rename replaces an existing file at the destination.
            self.delete(to_path)

        current = join_path(src.parent, from_name)
        if src.parent != dst.parent:
            if is_directory:
                self._backend.move_directory(DRIVE_ROOT, current, DRIVE_ROOT, dst.parent)
            else:
                self._backend.move_file(DRIVE_ROOT, current, DRIVE_ROOT, dst.parent)
            current = join_path(dst.parent, from_name)

        if to_name != from_name:
            if is_directory:
                self._backend.rename_directory(current, DRIVE_ROOT, to_name)
            else:
                self._backend.rename_file(current, DRIVE_ROOT, to_name)

        self.invalidate(namespace, src.parent)
        if is_directory:
            self.invalidate(namespace, src.relative)
        self._lister.refresh(namespace, src.parent)
        if dst.parent != src.parent:
            self.invalidate(namespace, dst.parent)
            self._lister.refresh(namespace, dst.parent)
        logger.info("Renamed %s -> %s", from_path, to_path)

    # ------------------------------------------------------------------
    # Symlinks
    # ------------------------------------------------------------------

    def symlink(self, target: str, link_path: str) -> None:
        """Create ``link_path`` pointing at ``target``.

        The link is a backend file named with the reserved symlink prefix
        whose body is the target. Targets inside the mount are stored as
        mount-relative absolute paths.
        """
        vpath = route(link_path)
        check_symlink(vpath)

        body = target
        if self._mount_point and target.startswith(self._mount_point + "/"):
            body = target[len(self._mount_point):]

        link_name = symlink_backend_name(vpath.namespace, vpath.name)
        self._backend.create_file(
            join_path(vpath.parent, link_name),
            body.encode("utf-8"),
            DRIVE_ROOT,
            vpath.namespace is Namespace.PRIVATE,
        )
        self.invalidate(vpath.namespace, vpath.parent)
        logger.info("Linked %s -> %s", link_path, body)

    def readlink(self, path: str) -> str:
        """Return the absolute target of the symlink at ``path``.

        Raises:
            OSError: ``EINVAL`` if ``path`` is not a symlink.
        """
        vpath = route(path)
        self._require_entry(vpath)

        if vpath.namespace is Namespace.DNS:
            parts = parse_path(vpath.parent)
            if len(parts) != 1:
                raise fs_error(errno.EINVAL, path)
            home = self._backend.get_home_directory(parts[0], vpath.name)
            return f"{self._mount_point}/public/{home.info.name}"

        if not vpath.namespace.is_plain or not self._resolver.is_symlink(path):
            raise fs_error(errno.EINVAL, path)

        link_name = symlink_backend_name(vpath.namespace, vpath.name)
        body = self._backend.get_file(join_path(vpath.parent, link_name), DRIVE_ROOT)
        target = body.decode("utf-8").strip()
        target_parts = parse_path(target)
        if target.startswith("/") and target_parts and target_parts[0] in NAMESPACE_NAMES:
            return self._mount_point + join_path(target)
        return target

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def delete(self, path: str) -> None:
        """Delete the file or symlink at ``path``.

        Raises:
            OSError: ``EPERM`` outside the drive namespaces, ``ENOENT`` if
                there is no such file.
        """
        vpath = route(path)
        self._require_entry(vpath)
        if not can_delete(path):
            raise fs_error(errno.EPERM, path, "Read-only folder")

        name = vpath.name
        if self._resolver.is_symlink(path):
            name = symlink_backend_name(vpath.namespace, name)
        elif not self._resolver.is_file(path):
            raise fs_error(errno.ENOENT, path)

        self._backend.delete_file(join_path(vpath.parent, name), DRIVE_ROOT)
        self.invalidate(vpath.namespace, vpath.parent)
        logger.info("Deleted %s", path)

    def touch(self, path: str) -> None:
        """Create an empty file at ``path`` if none exists.

        The backend rejects empty bodies, so the file holds a single
        newline. An existing file is left alone: the backend has no way
        to update timestamps.
        """
        vpath = route(path)
        self._require_entry(vpath)
        if not vpath.namespace.is_plain:
            raise fs_error(errno.EPERM, path, "Read-only folder")
        if vpath.namespace is Namespace.PUBLIC and vpath.parent == "/":
            raise fs_error(errno.EPERM, path, "Public folder can only contain subfolders")
        if self._resolver.is_file(path) or self._resolver.is_directory(path):
            return

        self._backend.create_file(
            vpath.relative, EMPTY_BODY, DRIVE_ROOT, vpath.namespace.is_private
        )
        self.invalidate(vpath.namespace, vpath.parent)
        logger.info("Touched %s", path)
