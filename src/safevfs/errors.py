"""
Error types raised by the adapter.

Every error is an ``OSError`` carrying a POSIX errno so the FUSE
dispatch layer can reply with it directly.
"""

from __future__ import annotations

import errno
import os
from typing import Optional


class BackendError(OSError):
    """A backend call failed.

    Args:
        err: POSIX errno the failure maps to.
        message: Human-readable description from the backend.
        path: Backend path the call was about, if any.
        code: Backend-specific error code, if the response carried one.
    """

    def __init__(
        self,
        err: int = errno.EIO,
        message: str = "Backend request failed",
        path: Optional[str] = None,
        code: Optional[int] = None,
    ) -> None:
        if path is None:
            super().__init__(err, message)
        else:
            super().__init__(err, message, path)
        self.code = code


class BackendNotFoundError(BackendError):
    """The backend reported that the requested path does not exist."""

    def __init__(
        self,
        message: str = "Not found",
        path: Optional[str] = None,
        code: Optional[int] = None,
    ) -> None:
        super().__init__(errno.ENOENT, message, path, code)


class StagedFlushError(BackendError):
    """A staged close deleted the remote object but could not recreate it.

    The remote object is absent at this point; the local buffer contents
    were the only copy and are lost once the handle is released.
    """

    def __init__(self, path: str, cause: BaseException) -> None:
        super().__init__(
            errno.EIO,
            f"Object deleted but not recreated: {cause}",
            path,
            getattr(cause, "code", None),
        )
        self.cause = cause


def fs_error(err: int, path: Optional[str] = None, message: Optional[str] = None) -> OSError:
    """Build an ``OSError`` for a filesystem-level failure.

    Args:
        err: POSIX errno.
        path: Virtual path the failure concerns.
        message: Override for the default ``strerror`` text.

    Returns:
        The exception, ready to raise.
    """
    text = message or os.strerror(err)
    if path is None:
        return OSError(err, text)
    return OSError(err, text, path)
