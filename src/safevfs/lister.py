"""
Lister -- fill the directory cache from backend listings.

A listing is a snapshot, not a merge: the affected node(s) are cleared
before being repopulated. The drive holds public and private items side
by side, so one listing of a drive directory repopulates the matching
node of both the ``public`` and the ``private`` tree.
"""

from __future__ import annotations

import errno
import logging
from typing import Dict, Iterable, List, Optional

from .backend import StorageBackend
from .cache import CacheTree
from .errors import BackendNotFoundError, fs_error
from .models import BackendItem, CacheEntry, DirectoryListing, EntryKind
from .router import (
    DRIVE_ROOT,
    NAMESPACE_NAMES,
    Namespace,
    join_path,
    parse_domain,
    parse_path,
    route,
    split_symlink_name,
)
from .settings_store import SettingsStore

logger = logging.getLogger("safevfs.lister")

_PLAIN = (Namespace.PUBLIC, Namespace.PRIVATE)


class Lister:
    """Fetches directory contents and repopulates the cache trees.

    Args:
        backend: Storage client.
        caches: One CacheTree per namespace.
        settings: External-domain registry.
        mount_point: Absolute mount point, used to size DNS symlinks.
    """

    def __init__(
        self,
        backend: StorageBackend,
        caches: Dict[Namespace, CacheTree],
        settings: SettingsStore,
        mount_point: str = "",
    ) -> None:
        self._backend = backend
        self._caches = caches
        self._settings = settings
        self._mount_point = mount_point.rstrip("/")

    def contents(self, path: str) -> List[str]:
        """Return the child names of a virtual directory.

        Served from the cache when the node is valid, otherwise fetched.
        """
        vpath = route(path)
        if vpath.is_root:
            return list(NAMESPACE_NAMES)
        rel = vpath.relative
        tree = self._caches[vpath.namespace]
        if tree.is_valid(rel):
            return tree.names(rel)
        return self.refresh(vpath.namespace, rel)

    def ensure_listed(self, namespace: Namespace, rel: str) -> None:
        """List ``rel`` if its node is not valid."""
        if not self._caches[namespace].is_valid(rel):
            self.refresh(namespace, rel)

    def refresh(self, namespace: Namespace, rel: str) -> List[str]:
        """Fetch ``rel`` from the backend and repopulate the cache.

        Args:
            namespace: Namespace the directory belongs to.
            rel: Namespace-relative directory path.

        Returns:
            Display names of the directory's children.

        Raises:
            OSError: ``EINVAL`` for a malformed external domain name,
                ``EPERM`` for paths below an external domain's home.
        """
        rel = join_path(rel)
        if namespace is Namespace.DNS:
            return self._refresh_dns(rel)
        if namespace is Namespace.OUTSIDE:
            return self._refresh_outside(rel)
        return self._refresh_drive(namespace, rel)

    # ------------------------------------------------------------------
    # public / private
    # ------------------------------------------------------------------

    def _refresh_drive(self, namespace: Namespace, rel: str) -> List[str]:
        generations = {ns: self._caches[ns].generation(rel) for ns in _PLAIN}
        try:
            listing = self._backend.list_directory(rel, DRIVE_ROOT)
        except BackendNotFoundError as exc:
            # Indistinguishable from an empty directory for the client.
            logger.warning("Listing %s: backend reports not found (%s)", rel, exc.strerror)
            for ns in _PLAIN:
                self._caches[ns].discard(rel)
            return []

        public, private = self._caches[Namespace.PUBLIC], self._caches[Namespace.PRIVATE]
        with public.lock, private.lock:
            public.reset(rel)
            private.reset(rel)
            self._populate_drive(rel, listing)
            for ns in _PLAIN:
                self._caches[ns].prune(rel)
                self._caches[ns].mark_valid(rel, generations[ns])
            names = self._caches[namespace].names(rel)

        logger.debug("Listed drive %s: %d item(s)", rel, len(listing.files) + len(listing.sub_directories))
        return names

    def _populate_drive(self, rel: str, listing: DirectoryListing) -> None:
        default_private = bool(listing.info.is_private)

        for item in listing.files:
            link = split_symlink_name(item.name)
            if link is not None:
                link_ns, display = link
                entry = CacheEntry.from_item(
                    item, EntryKind.SYMLINK, display, link_ns.is_private
                )
                entry.executable = True
                self._caches[link_ns].put(EntryKind.SYMLINK, rel, display, entry)
                continue
            ns = self._namespace_for(item, default_private)
            entry = CacheEntry.from_item(item, EntryKind.FILE, is_private=ns.is_private)
            self._caches[ns].put(EntryKind.FILE, rel, item.name, entry)

        for item in listing.sub_directories:
            ns = self._namespace_for(item, default_private)
            entry = CacheEntry.from_item(item, EntryKind.FOLDER, is_private=ns.is_private)
            self._caches[ns].put(EntryKind.FOLDER, rel, item.name, entry)

    @staticmethod
    def _namespace_for(item: BackendItem, default_private: bool) -> Namespace:
        is_private = default_private if item.is_private is None else item.is_private
        return Namespace.PRIVATE if is_private else Namespace.PUBLIC

    # ------------------------------------------------------------------
    # outside
    # ------------------------------------------------------------------

    def _refresh_outside(self, rel: str) -> List[str]:
        tree = self._caches[Namespace.OUTSIDE]
        parts = parse_path(rel)

        if not parts:
            generation = tree.generation(rel)
            names = self._settings.alien_items()
            with tree.lock:
                tree.reset(rel)
                for name in names:
                    tree.put(EntryKind.FOLDER, rel, name, CacheEntry(
                        name=name, backend_name=name, kind=EntryKind.FOLDER,
                    ))
                tree.prune(rel)
                tree.mark_valid(rel, generation)
                return tree.names(rel)

        if len(parts) > 1:
            raise fs_error(errno.EPERM, "/outside" + rel, "Cannot list below a domain home")

        service_name, long_name = parse_domain(parts[0])
        generation = tree.generation(rel)
        try:
            listing = self._backend.get_home_directory(long_name, service_name)
        except BackendNotFoundError as exc:
            logger.warning("Domain %s: backend reports not found (%s)", parts[0], exc.strerror)
            tree.discard(rel)
            return []

        with tree.lock:
            tree.reset(rel)
            self._put_all(tree, rel, EntryKind.FILE, listing.files, service_name, long_name)
            self._put_all(tree, rel, EntryKind.FOLDER, listing.sub_directories, service_name, long_name)
            tree.prune(rel)
            tree.mark_valid(rel, generation)
            return tree.names(rel)

    @staticmethod
    def _put_all(
        tree: CacheTree,
        rel: str,
        kind: EntryKind,
        items: Iterable[BackendItem],
        service_name: str,
        long_name: str,
    ) -> None:
        for item in items:
            entry = CacheEntry.from_item(item, kind)
            entry.service_name = service_name
            entry.long_name = long_name
            tree.put(kind, rel, item.name, entry)

    # ------------------------------------------------------------------
    # dns
    # ------------------------------------------------------------------

    def _refresh_dns(self, rel: str) -> List[str]:
        tree = self._caches[Namespace.DNS]
        parts = parse_path(rel)
        if len(parts) > 1:
            raise fs_error(errno.EPERM, "/dns" + rel, "Cannot list below a long name")

        generation = tree.generation(rel)
        long_name: Optional[str] = parts[0] if parts else None
        try:
            if long_name is None:
                items = self._backend.list_long_names()
            else:
                items = self._backend.list_services(long_name)
        except BackendNotFoundError as exc:
            logger.warning("DNS %s: backend reports not found (%s)", rel, exc.strerror)
            tree.discard(rel)
            return []

        with tree.lock:
            tree.reset(rel)
            for item in items:
                if long_name is None:
                    tree.put(EntryKind.FOLDER, rel, item, CacheEntry(
                        name=item, backend_name=item, kind=EntryKind.FOLDER,
                    ))
                else:
                    target = f"{self._mount_point}/public/{item}"
                    tree.put(EntryKind.SYMLINK, rel, item, CacheEntry(
                        name=item,
                        backend_name=item,
                        kind=EntryKind.SYMLINK,
                        size=len(target),
                        executable=True,
                        service_name=item,
                        long_name=long_name,
                    ))
            tree.prune(rel)
            tree.mark_valid(rel, generation)
            return tree.names(rel)
