"""
Staged file handles -- read/write through a local scratch buffer.

The backend can only create, fetch or delete whole files. A handle
therefore stages the file body in a private spooled buffer: the remote
body is fetched on the first read (or the first write in ``rw`` / ``a``
mode), writes land in the buffer, and a mutated handle is published on
close by deleting the remote object and creating it again.
"""

from __future__ import annotations

import errno
import logging
import tempfile
import threading
from typing import Optional

from .attributes import AttributeResolver
from .backend import EMPTY_BODY, StorageBackend, ensure_body
from .errors import BackendError, BackendNotFoundError, StagedFlushError, fs_error
from .lister import Lister
from .mutations import MutationCoordinator
from .router import (
    DRIVE_ROOT,
    PRELOAD_MODES,
    WRITE_MODES,
    Namespace,
    check_open,
    join_path,
    parse_domain,
    parse_path,
    route,
)

logger = logging.getLogger("safevfs.handles")

DEFAULT_SPOOL_BYTES = 8 * 1024 * 1024


class StagedFileHandle:
    """One open file.

    Use :meth:`open` rather than the constructor; it applies the
    namespace gates and records whether the file already existed.

    Attributes:
        path: Virtual path the handle was opened on.
        mode: One of ``r``, ``w``, ``rw``, ``a``.
        existed: Whether the file existed when the handle was opened.
        contents_loaded: Whether the buffer holds the remote body.
        contents_changed: Whether the buffer was written or truncated.
    """

    def __init__(
        self,
        path: str,
        mode: str,
        backend: StorageBackend,
        lister: Lister,
        mutations: MutationCoordinator,
        existed: bool,
        spool_max_bytes: int = DEFAULT_SPOOL_BYTES,
    ) -> None:
        self.path = path
        self.mode = mode
        self.existed = existed
        self.contents_loaded = False
        self.contents_changed = False
        self.closed = False

        self._vpath = route(path)
        self._backend = backend
        self._lister = lister
        self._mutations = mutations
        self._lock = threading.Lock()
        self._buffer = tempfile.SpooledTemporaryFile(max_size=spool_max_bytes)

        # Paths under /outside/<service>.<longname>/... are read from that
        # domain's home directory.
        self.service_name: Optional[str] = None
        self.long_name: Optional[str] = None
        self._remote_path = self._vpath.relative
        if self._vpath.namespace is Namespace.OUTSIDE:
            parts = parse_path(self._vpath.relative)
            self.service_name, self.long_name = parse_domain(parts[0])
            self._remote_path = join_path(*parts[1:])

    @classmethod
    def open(
        cls,
        path: str,
        mode: str,
        backend: StorageBackend,
        resolver: AttributeResolver,
        lister: Lister,
        mutations: MutationCoordinator,
        spool_max_bytes: int = DEFAULT_SPOOL_BYTES,
    ) -> "StagedFileHandle":
        """Open ``path`` in ``mode``.

        Raises:
            OSError: ``EPERM`` for writes where the namespace forbids them,
                ``EISDIR`` for ``/`` or a namespace root, ``ENOENT`` when
                opening a missing file read-only.
        """
        vpath = route(path)
        check_open(vpath, mode)
        if resolver.is_directory(path):
            raise fs_error(errno.EISDIR, path)

        existed = resolver.is_file(path)
        if not existed and mode not in WRITE_MODES:
            raise fs_error(errno.ENOENT, path)

        handle = cls(path, mode, backend, lister, mutations, existed, spool_max_bytes)
        logger.debug("Opened %s mode=%s existed=%s", path, mode, existed)
        return handle

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def read(self, offset: int, size: int) -> bytes:
        """Return up to ``size`` bytes at ``offset``, fetching the body once."""
        with self._lock:
            self._check_open()
            if not self.contents_loaded and not self.contents_changed:
                self._load()
            self._buffer.seek(offset)
            return self._buffer.read(size)

    def write(self, offset: int, data: bytes) -> int:
        """Write ``data`` at ``offset`` into the buffer.

        Returns:
            Number of bytes written.

        Raises:
            OSError: ``EPERM`` on a read-only handle.
        """
        with self._lock:
            self._check_open()
            if self.mode not in WRITE_MODES:
                raise fs_error(errno.EPERM, self.path, "Handle is read-only")
            if self.mode in PRELOAD_MODES and not self.contents_loaded:
                self._load()
            self.contents_changed = True
            self._buffer.seek(offset)
            self._buffer.write(data)
            return len(data)

    def truncate(self, length: int) -> None:
        """Cut or zero-extend the buffer to ``length`` bytes."""
        with self._lock:
            self._check_open()
            if self.mode not in WRITE_MODES:
                raise fs_error(errno.EPERM, self.path, "Handle is read-only")
            if length and self.mode in PRELOAD_MODES and not self.contents_loaded:
                self._load()
            current = self._buffer.seek(0, 2)
            if length < current:
                self._buffer.truncate(length)
            elif length > current:
                self._buffer.write(b"\0" * (length - current))
            if length == 0 or not self.existed:
                self.contents_loaded = True
            self.contents_changed = True

    def size(self) -> int:
        """Current length of the staged buffer."""
        with self._lock:
            self._check_open()
            return self._buffer.seek(0, 2)

    def close(self) -> None:
        """Publish the buffer if needed and release it.

        A mutated handle is flushed as delete-then-recreate. A file that
        did not exist before and was never written gets the single-newline
        marker body. The buffer is released on every path.

        Raises:
            StagedFlushError: If the remote object was deleted but could
                not be recreated.
        """
        with self._lock:
            if self.closed:
                return
            try:
                if self.contents_changed:
                    self._flush()
                elif self.mode in WRITE_MODES and not self.existed:
                    self._backend.create_file(
                        self._remote_path,
                        EMPTY_BODY,
                        DRIVE_ROOT,
                        self._vpath.namespace.is_private,
                    )
                    self._relist_parent()
            finally:
                self._buffer.close()
                self.closed = True
                logger.debug("Closed %s", self.path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self.closed:
            raise fs_error(errno.EBADF, self.path, "Handle is closed")

    def _load(self) -> None:
        if self.existed:
            body = self._fetch()
            self._buffer.seek(0)
            self._buffer.truncate(0)
            self._buffer.write(body)
        self.contents_loaded = True

    def _fetch(self) -> bytes:
        namespace = self._vpath.namespace
        if namespace is Namespace.OUTSIDE:
            return self._backend.get_file_unauth(
                self.long_name, self.service_name, self._remote_path
            )
        if namespace is Namespace.DNS:
            raise fs_error(errno.EPERM, self.path, "DNS entries are links")
        return self._backend.get_file(self._remote_path, DRIVE_ROOT)

    def _flush(self) -> None:
        self._buffer.seek(0)
        body = ensure_body(self._buffer.read())

        deleted = False
        try:
            self._backend.delete_file(self._remote_path, DRIVE_ROOT)
            deleted = True
        except BackendNotFoundError:
            logger.debug("%s is new; nothing to delete before create", self.path)

        try:
            self._backend.create_file(
                self._remote_path, body, DRIVE_ROOT, self._vpath.namespace.is_private
            )
        except BackendError as exc:
            if not deleted:
                raise
            logger.error("%s deleted but not recreated: %s", self.path, exc)
            raise StagedFlushError(self.path, exc) from exc

        logger.info("Flushed %s (%d bytes)", self.path, len(body))
        self._relist_parent()

    def _relist_parent(self) -> None:
        namespace, parent = self._vpath.namespace, self._vpath.parent
        self._mutations.invalidate(namespace, parent)
        self._lister.refresh(namespace, parent)
