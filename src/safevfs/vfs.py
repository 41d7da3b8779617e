"""
SafeVFS -- the filesystem surface the FUSE layer calls into.

Wires the router, the per-namespace cache trees, the lister, the
attribute resolver, the mutation coordinator and staged file handles
around a single StorageBackend.

.. code-block:: python

    backend = SafeLauncherBackend("http://localhost:8100")
    vfs = SafeVFS(backend, mount_point="/home/me/safe-disk")
    vfs.start()
    vfs.contents("/public")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from . import router
from .attributes import AttributeResolver, Times
from .backend import StorageBackend
from .cache import CacheTree
from .handles import DEFAULT_SPOOL_BYTES, StagedFileHandle
from .lister import Lister
from .mutations import MutationCoordinator
from .router import Namespace
from .settings_store import SettingsStore

logger = logging.getLogger("safevfs.vfs")


class SafeVFS:
    """Virtual filesystem over a SAFE storage backend.

    Args:
        backend: Storage client.
        mount_point: Absolute path the filesystem is mounted at. Used to
            translate symlink targets.
        spool_max_bytes: In-memory size of a handle's buffer before it
            spills to a temporary file.
    """

    def __init__(
        self,
        backend: StorageBackend,
        mount_point: str = "",
        spool_max_bytes: int = DEFAULT_SPOOL_BYTES,
    ) -> None:
        self.backend = backend
        self.mount_point = mount_point.rstrip("/")
        self.spool_max_bytes = spool_max_bytes

        self.caches: Dict[Namespace, CacheTree] = {ns: CacheTree(ns.value) for ns in Namespace}
        self.settings = SettingsStore(backend)
        self.lister = Lister(backend, self.caches, self.settings, self.mount_point)
        self.resolver = AttributeResolver(self.caches, self.lister)
        self.mutations = MutationCoordinator(
            backend, self.caches, self.lister, self.resolver, self.settings, self.mount_point
        )

    def start(self) -> None:
        """Load the settings record, creating it on first use."""
        settings = self.settings.load()
        logger.info(
            "SafeVFS ready at %s (%d registered domain(s))",
            self.mount_point or "<unmounted>",
            len(settings.alien_items),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def contents(self, path: str) -> List[str]:
        return self.lister.contents(path)

    def getattr(self, path: str) -> Dict[str, Any]:
        return self.resolver.attributes(path)

    def is_file(self, path: str) -> bool:
        return self.resolver.is_file(path)

    def is_directory(self, path: str) -> bool:
        return self.resolver.is_directory(path)

    def is_symlink(self, path: str) -> bool:
        return self.resolver.is_symlink(path)

    def is_executable(self, path: str) -> bool:
        return self.resolver.is_executable(path)

    def times(self, path: str) -> Times:
        return self.resolver.times(path)

    def size(self, path: str) -> int:
        return self.resolver.size(path)

    def can_write(self, path: str) -> bool:
        return router.can_write(path)

    def can_delete(self, path: str) -> bool:
        return router.can_delete(path)

    def can_mkdir(self, path: str) -> bool:
        return router.can_mkdir(path)

    def can_rmdir(self, path: str) -> bool:
        return router.can_rmdir(path)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def mkdir(self, path: str) -> None:
        self.mutations.mkdir(path)

    def rmdir(self, path: str) -> None:
        self.mutations.rmdir(path)

    def rename(self, from_path: str, to_path: str) -> None:
        self.mutations.rename(from_path, to_path)

    def symlink(self, target: str, link_path: str) -> None:
        self.mutations.symlink(target, link_path)

    def readlink(self, path: str) -> str:
        return self.mutations.readlink(path)

    def delete(self, path: str) -> None:
        self.mutations.delete(path)

    def touch(self, path: str) -> None:
        self.mutations.touch(path)

    # ------------------------------------------------------------------
    # File handles
    # ------------------------------------------------------------------

    def raw_open(self, path: str, mode: str) -> StagedFileHandle:
        """Open ``path`` in mode ``r``, ``w``, ``rw`` or ``a``."""
        return StagedFileHandle.open(
            path,
            mode,
            self.backend,
            self.resolver,
            self.lister,
            self.mutations,
            self.spool_max_bytes,
        )

    def raw_read(self, handle: StagedFileHandle, offset: int, size: int) -> bytes:
        return handle.read(offset, size)

    def raw_write(self, handle: StagedFileHandle, offset: int, data: bytes) -> int:
        return handle.write(offset, data)

    def raw_truncate(self, handle: StagedFileHandle, length: int) -> None:
        handle.truncate(length)

    def raw_close(self, handle: StagedFileHandle) -> None:
        handle.close()

    def staged_attributes(self, handle: StagedFileHandle) -> Dict[str, Any]:
        """getattr for a file whose current body only lives in ``handle``."""
        return self.resolver.staged_attributes(handle.path, handle.size())
