"""
FUSE Mount -- the SAFE network as a mounted POSIX filesystem.

``SafeFS`` maps fusepy callbacks onto a ``SafeVFS`` and keeps a table
of open StagedFileHandles keyed by file handle number. ``FUSEDaemon``
mounts, unmounts and reports on the filesystem.

Virtual directory layout::

    /
    ├── public/     items visible to everyone
    ├── private/    items only this account can read
    ├── outside/    registered external domains (mkdir service.longname)
    └── dns/        DNS long names and their services

Dependencies (optional):
    pip install safevfs[fuse]  # pulls in fusepy
"""

from __future__ import annotations

import errno
import itertools
import json
import logging
import os
import subprocess
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .backend import SafeLauncherBackend
from .config import load_config, resolve_home
from .handles import StagedFileHandle
from .models import SafeVFSConfig
from .vfs import SafeVFS

logger = logging.getLogger("safevfs.fuse")


def open_mode(flags: int) -> str:
    """Translate ``open(2)`` flags to a staged-handle mode.

    Write-only opens without ``O_TRUNC`` are staged as ``rw`` so that the
    bytes not overwritten survive the whole-file republish.
    """
    access = flags & os.O_ACCMODE
    if access == os.O_RDONLY:
        return "r"
    if flags & os.O_APPEND:
        return "a"
    if access == os.O_WRONLY and flags & os.O_TRUNC:
        return "w"
    return "rw"


# ---------------------------------------------------------------------------
# SafeFS -- fusepy operations
# ---------------------------------------------------------------------------


class SafeFS:
    """FUSE Operations implementation over a SafeVFS.

    This class is designed to be used with ``fusepy``:

    .. code-block:: python

        import fuse
        fs = SafeFS(vfs)
        fuse.FUSE(fs, mount_point, nothreads=False, foreground=True)

    Args:
        vfs: The virtual filesystem to expose.
    """

    def __init__(self, vfs: SafeVFS) -> None:
        self._vfs = vfs
        self._handles: Dict[int, StagedFileHandle] = {}
        self._next_fh = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self, op: str, *args: Any) -> Any:
        handler = getattr(self, op, None)
        if handler is None:
            raise OSError(errno.ENOSYS, "Function not implemented")
        return handler(*args)

    # ------------------------------------------------------------------
    # Handle table
    # ------------------------------------------------------------------

    def _register(self, handle: StagedFileHandle) -> int:
        with self._lock:
            fh = next(self._next_fh)
            self._handles[fh] = handle
        return fh

    def _staged(self, path: str) -> Optional[StagedFileHandle]:
        """Most recent open handle on ``path`` whose buffer differs from the remote."""
        with self._lock:
            for fh in sorted(self._handles, reverse=True):
                handle = self._handles[fh]
                if handle.path == path and (handle.contents_changed or not handle.existed):
                    return handle
        return None

    def _handle(self, path: str, fh: Optional[int]) -> StagedFileHandle:
        with self._lock:
            handle = self._handles.get(fh) if fh is not None else None
        if handle is None:
            raise OSError(errno.EBADF, "Bad file descriptor", path)
        return handle

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self, path: str) -> None:
        logger.info("Filesystem initialised")

    def destroy(self, path: str) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            try:
                handle.close()
            except OSError as exc:
                logger.error("Failed to close %s on unmount: %s", handle.path, exc)

    # ------------------------------------------------------------------
    # Metadata and directories
    # ------------------------------------------------------------------

    def getattr(self, path: str, fh: Optional[int] = None) -> Dict[str, Any]:
        """Return stat-like attributes for a path.

        A file that is being written reports its staged size, and a file
        created but not yet released exists only in its handle.

        Raises:
            OSError: With ``errno.ENOENT`` if the path does not exist.
        """
        staged = self._staged(path)
        if staged is not None:
            return self._vfs.staged_attributes(staged)
        return self._vfs.getattr(path)

    def readdir(self, path: str, fh: Optional[int]) -> List[str]:
        """Return the directory listing including ``.`` and ``..``.

        Raises:
            OSError: With ``errno.ENOENT`` if the path is not a directory.
        """
        if not self._vfs.is_directory(path):
            raise OSError(errno.ENOENT, "No such file or directory", path)
        return [".", ".."] + self._vfs.contents(path)

    def readlink(self, path: str) -> str:
        return self._vfs.readlink(path)

    def symlink(self, target: str, source: str) -> None:
        """Create ``target`` as a link to ``source`` (``ln -s source target``)."""
        self._vfs.symlink(source, target)

    def mkdir(self, path: str, mode: int) -> None:
        self._vfs.mkdir(path)

    def rmdir(self, path: str) -> None:
        self._vfs.rmdir(path)

    def rename(self, old: str, new: str) -> None:
        self._vfs.rename(old, new)

    def unlink(self, path: str) -> None:
        self._vfs.delete(path)

    def link(self, target: str, source: str) -> None:
        raise OSError(errno.ENOSYS, "Hard links are not supported", target)

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def create(self, path: str, mode: int, fi: Optional[Any] = None) -> int:
        """Create a new file and return its handle number."""
        return self._register(self._vfs.raw_open(path, "w"))

    def open(self, path: str, flags: int) -> int:
        """Open a file and return its handle number.

        Raises:
            OSError: With the errno raised by the namespace gates.
        """
        handle = self._vfs.raw_open(path, open_mode(flags))
        if flags & os.O_TRUNC and handle.mode != "r":
            handle.truncate(0)
        return self._register(handle)

    def read(self, path: str, size: int, offset: int, fh: int) -> bytes:
        return self._vfs.raw_read(self._handle(path, fh), offset, size)

    def write(self, path: str, data: bytes, offset: int, fh: int) -> int:
        return self._vfs.raw_write(self._handle(path, fh), offset, data)

    def truncate(self, path: str, length: int, fh: Optional[int] = None) -> None:
        """Truncate through an open handle, or through a short-lived one."""
        if fh is not None:
            self._vfs.raw_truncate(self._handle(path, fh), length)
            return
        staged = self._staged(path)
        if staged is not None:
            self._vfs.raw_truncate(staged, length)
            return
        handle = self._vfs.raw_open(path, "rw")
        try:
            self._vfs.raw_truncate(handle, length)
        finally:
            self._vfs.raw_close(handle)

    def flush(self, path: str, fh: int) -> int:
        """Nothing to do; buffers are published on release."""
        return 0

    def release(self, path: str, fh: int) -> int:
        """Close the handle, publishing its buffer if it changed."""
        with self._lock:
            handle = self._handles.pop(fh, None)
        if handle is not None:
            self._vfs.raw_close(handle)
        return 0

    # ------------------------------------------------------------------
    # Operations the backend cannot represent
    # ------------------------------------------------------------------

    def utimens(self, path: str, times: Optional[Tuple[float, float]] = None) -> int:
        """Create the file if missing (``touch``); timestamps are not stored."""
        if self._staged(path) is not None:
            return 0
        if not (self._vfs.is_file(path) or self._vfs.is_directory(path)):
            self._vfs.touch(path)
        return 0

    def chmod(self, path: str, mode: int) -> int:
        """Ignore chmod on the virtual filesystem."""
        return 0

    def chown(self, path: str, uid: int, gid: int) -> int:
        """Ignore chown on the virtual filesystem."""
        return 0

    # Kernel housekeeping calls with nothing to do behind them
    def access(self, path: str, amode: int) -> int:
        return 0

    def opendir(self, path: str) -> int:
        return 0

    def releasedir(self, path: str, fh: int) -> int:
        return 0

    def fsync(self, path: str, datasync: int, fh: int) -> int:
        return 0

    def fsyncdir(self, path: str, datasync: int, fh: int) -> int:
        return 0

    def statfs(self, path: str) -> Dict[str, Any]:
        return {}

    def getxattr(self, path: str, name: str, position: int = 0) -> bytes:
        raise OSError(errno.ENOTSUP, "Extended attributes are not supported", path)

    def listxattr(self, path: str) -> List[str]:
        return []


# ---------------------------------------------------------------------------
# FUSEDaemon -- lifecycle manager
# ---------------------------------------------------------------------------


class FUSEDaemon:
    """Lifecycle manager for the SafeFS FUSE mount.

    Args:
        mount_point: Directory to mount the filesystem at. Defaults to
            the configured ``mount_point``.
        home: safevfs home directory. Defaults to ``~/.safevfs``.
        config: Preloaded configuration. Read from ``home`` if omitted.
    """

    _PID_FILE = "fuse.pid"
    _STATE_FILE = "fuse_state.json"

    def __init__(
        self,
        mount_point: Optional[Path] = None,
        home: Optional[Path] = None,
        config: Optional[SafeVFSConfig] = None,
    ) -> None:
        self._home = resolve_home(home)
        self._config = config or load_config(self._home)
        self._mount_point = (mount_point or self._config.mount_point).expanduser()
        self._state_dir = self._home / "fuse"

    def _state_file(self) -> Path:
        return self._state_dir / self._STATE_FILE

    def _pid_file(self) -> Path:
        return self._state_dir / self._PID_FILE

    def _write_state(self, mounted: bool, pid: Optional[int] = None) -> None:
        """Persist the mount state to disk."""
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state = {
            "mounted": mounted,
            "mount_point": str(self._mount_point),
            "home": str(self._home),
            "launcher_url": self._config.launcher_url,
            "pid": pid,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._state_file().write_text(json.dumps(state, indent=2), encoding="utf-8")

    def _read_state(self) -> Optional[Dict[str, Any]]:
        """Read the mount state, or None if missing or corrupt."""
        path = self._state_file()
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return None

    def _is_mounted(self) -> bool:
        """Check whether the mount point is currently active.

        Uses ``/proc/mounts`` on Linux and ``mount`` elsewhere.
        """
        mount_str = str(self._mount_point)

        proc_mounts = Path("/proc/mounts")
        if proc_mounts.exists():
            try:
                for line in proc_mounts.read_text(encoding="utf-8").splitlines():
                    parts = line.split()
                    if len(parts) >= 2 and parts[1] == mount_str:
                        return True
            except OSError as exc:
                logger.debug("Could not read /proc/mounts: %s", exc)
            return False

        try:
            result = subprocess.run(["mount"], capture_output=True, text=True, timeout=5)
            return mount_str in result.stdout
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
            return False

    def build_vfs(self) -> SafeVFS:
        """Create the backend client and the SafeVFS for this mount."""
        backend = SafeLauncherBackend(
            base_url=self._config.launcher_url,
            app=self._config.app,
            timeout=self._config.request_timeout,
        )
        return SafeVFS(
            backend,
            mount_point=str(self._mount_point),
            spool_max_bytes=self._config.spool_max_bytes,
        )

    def start(self, foreground: bool = False) -> bool:
        """Mount the filesystem.

        Args:
            foreground: If True, mount in this process and block until
                unmounted. Otherwise re-exec a detached child that does.

        Returns:
            True if the mount was initiated successfully.
        """
        try:
            import fuse as _fuse  # type: ignore[import]
        except ImportError:
            logger.error("fusepy is not installed. Install with: pip install safevfs[fuse]")
            return False

        if self._is_mounted():
            logger.info("Already mounted at %s", self._mount_point)
            return True

        self._mount_point.mkdir(parents=True, exist_ok=True)
        self._state_dir.mkdir(parents=True, exist_ok=True)

        if foreground:
            logger.info("Mounting SAFE filesystem at %s (foreground)", self._mount_point)
            try:
                vfs = self.build_vfs()
                vfs.start()
                self._write_state(mounted=True, pid=os.getpid())
                _fuse.FUSE(
                    SafeFS(vfs),
                    str(self._mount_point),
                    nothreads=False,
                    foreground=True,
                    allow_other=False,
                )
                return True
            except (OSError, RuntimeError) as exc:
                logger.error("Failed to mount filesystem: %s", exc)
                self._write_state(mounted=False)
                return False

        logger.info("Mounting SAFE filesystem at %s (background)", self._mount_point)
        try:
            proc = subprocess.Popen(
                [
                    sys.executable,
                    "-c",
                    (
                        "from pathlib import Path; "
                        "from safevfs.fuse_mount import FUSEDaemon; "
                        f"FUSEDaemon("
                        f"  mount_point=Path({str(self._mount_point)!r}), "
                        f"  home=Path({str(self._home)!r})"
                        f").start(foreground=True)"
                    ),
                ],
                start_new_session=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.error("Failed to start FUSE daemon: %s", exc)
            self._write_state(mounted=False)
            return False

        self._write_state(mounted=True, pid=proc.pid)
        self._pid_file().write_text(str(proc.pid), encoding="utf-8")
        logger.info("FUSE daemon started with pid %d", proc.pid)
        return True

    def stop(self) -> bool:
        """Unmount with ``fusermount -u`` (Linux) or ``umount``.

        Returns:
            True if the filesystem is no longer mounted.
        """
        if not self._is_mounted():
            logger.info("Not mounted at %s", self._mount_point)
            self._write_state(mounted=False)
            return True

        mount_str = str(self._mount_point)
        for cmd in (["fusermount", "-u", mount_str], ["umount", mount_str]):
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=10)
            except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
                logger.debug("Unmount command %s failed: %s", cmd, exc)
                continue
            if result.returncode == 0:
                logger.info("Unmounted %s", mount_str)
                self._write_state(mounted=False)
                return True
            logger.debug(
                "%s failed (rc=%d): %s", " ".join(cmd), result.returncode, result.stderr.strip()
            )

        logger.error("Could not unmount %s; try: fusermount -u %s", mount_str, mount_str)
        return False

    def status(self) -> Dict[str, Any]:
        """Return the current mount status.

        Returns:
            Dictionary with ``mounted``, ``mount_point``, ``home``,
            ``launcher_url``, ``pid`` and ``updated_at``.
        """
        state = self._read_state() or {}
        return {
            "mounted": self._is_mounted(),
            "mount_point": str(self._mount_point),
            "home": str(self._home),
            "launcher_url": self._config.launcher_url,
            "pid": state.get("pid"),
            "updated_at": state.get("updated_at"),
        }
