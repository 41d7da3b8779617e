"""
Storage backends -- what the adapter talks to on the other side.

``StorageBackend`` is the complete capability surface the adapter
depends on. ``SafeLauncherBackend`` speaks the SAFE launcher's REST API
over HTTP; tests substitute an in-memory double that counts calls.

The backend has no partial update: files are only ever created whole,
fetched whole and deleted whole.
"""

from __future__ import annotations

import errno
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .errors import BackendError, BackendNotFoundError
from .models import AppInfo, DirectoryListing, RootPath

logger = logging.getLogger("safevfs.backend")

# The network rejects zero-byte bodies.
EMPTY_BODY = b"\n"


def ensure_body(body: bytes) -> bytes:
    """Return ``body``, or the single-newline marker if it is empty."""
    return body if body else EMPTY_BODY


class StorageBackend(ABC):
    """Abstract remote storage client."""

    # -- drive (NFS) ------------------------------------------------------

    @abstractmethod
    def list_directory(self, path: str, root: RootPath) -> DirectoryListing:
        """List the files and subdirectories of ``path``.

        Raises:
            BackendNotFoundError: If the directory does not exist.
        """

    @abstractmethod
    def create_directory(self, path: str, root: RootPath, is_private: bool) -> None:
        """Create a directory tagged public or private."""

    @abstractmethod
    def delete_directory(self, path: str, root: RootPath) -> None:
        """Delete a directory."""

    @abstractmethod
    def rename_directory(self, path: str, root: RootPath, new_name: str) -> None:
        """Change a directory's name in place (metadata update)."""

    @abstractmethod
    def move_directory(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        """Move a directory under another parent directory."""

    @abstractmethod
    def create_file(
        self, path: str, body: bytes, root: RootPath, is_private: bool
    ) -> None:
        """Create a file with the given full body."""

    @abstractmethod
    def get_file(self, path: str, root: RootPath) -> bytes:
        """Fetch a file's full body.

        Raises:
            BackendNotFoundError: If the file does not exist.
        """

    @abstractmethod
    def delete_file(self, path: str, root: RootPath) -> None:
        """Delete a file."""

    @abstractmethod
    def rename_file(self, path: str, root: RootPath, new_name: str) -> None:
        """Change a file's name in place (metadata update)."""

    @abstractmethod
    def move_file(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        """Move a file under another parent directory."""

    # -- external domains (DNS) ------------------------------------------

    @abstractmethod
    def list_long_names(self) -> List[str]:
        """List the DNS long names registered by this account."""

    @abstractmethod
    def list_services(self, long_name: str) -> List[str]:
        """List the services published under ``long_name``."""

    @abstractmethod
    def get_home_directory(self, long_name: str, service_name: str) -> DirectoryListing:
        """List the home directory of ``service_name.long_name``.

        Raises:
            BackendNotFoundError: If the domain does not resolve.
        """

    @abstractmethod
    def get_file_unauth(self, long_name: str, service_name: str, path: str) -> bytes:
        """Fetch a file from an external domain without authorisation."""


# ---------------------------------------------------------------------------
# SAFE launcher HTTP client
# ---------------------------------------------------------------------------


def _status_errno(status: int) -> int:
    """Map an HTTP status code to the errno surfaced to the filesystem."""
    if status in (401, 403):
        return errno.EACCES
    if status == 400:
        return errno.EINVAL
    return errno.EIO


def _quote(path: str) -> str:
    return requests.utils.quote(path.strip("/"), safe="/")


class SafeLauncherBackend(StorageBackend):
    """StorageBackend over the SAFE launcher REST API.

    Args:
        base_url: Launcher endpoint, e.g. ``http://localhost:8100``.
        app: Application identity sent when authorising.
        timeout: Per-request timeout in seconds.
        session: Pre-built ``requests.Session`` (tests inject a mock).
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8100",
        app: Optional[AppInfo] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._app = app or AppInfo()
        self._timeout = timeout
        self._session = session or requests.Session()
        self._token: Optional[str] = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def authorize(self) -> str:
        """Request an access token from the launcher.

        Returns:
            The bearer token, also stored on the session.
        """
        payload = {
            "app": {
                "name": self._app.name,
                "id": self._app.id,
                "version": self._app.version,
                "vendor": self._app.vendor,
            },
            "permissions": list(self._app.permissions),
        }
        data = self._request("POST", "/auth", json=payload, auth=False).json()
        self._token = data["token"]
        self._session.headers["Authorization"] = f"Bearer {self._token}"
        logger.info("Authorised with launcher at %s", self._base_url)
        return self._token

    def _request(
        self, method: str, endpoint: str, auth: bool = True, **kwargs: Any
    ) -> requests.Response:
        """Perform one HTTP call and raise a BackendError on failure."""
        if auth and self._token is None:
            self.authorize()

        url = f"{self._base_url}{endpoint}"
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, endpoint, exc)
            raise BackendError(errno.EIO, str(exc), endpoint) from exc

        if resp.status_code < 400:
            return resp

        code: Optional[int] = None
        description = resp.reason or "Backend request failed"
        try:
            body: Dict[str, Any] = resp.json()
            code = body.get("errorCode")
            description = body.get("description", description)
        except ValueError:
            pass

        logger.debug(
            "%s %s -> %d (%s): %s", method, endpoint, resp.status_code, code, description
        )
        if resp.status_code == 404:
            raise BackendNotFoundError(description, endpoint, code)
        raise BackendError(_status_errno(resp.status_code), description, endpoint, code)

    # ------------------------------------------------------------------
    # Drive
    # ------------------------------------------------------------------

    def list_directory(self, path: str, root: RootPath) -> DirectoryListing:
        resp = self._request("GET", f"/nfs/directory/{root.value}/{_quote(path)}")
        return DirectoryListing.model_validate(resp.json())

    def create_directory(self, path: str, root: RootPath, is_private: bool) -> None:
        self._request(
            "POST",
            f"/nfs/directory/{root.value}/{_quote(path)}",
            json={"isPrivate": is_private, "metadata": ""},
        )

    def delete_directory(self, path: str, root: RootPath) -> None:
        self._request("DELETE", f"/nfs/directory/{root.value}/{_quote(path)}")

    def rename_directory(self, path: str, root: RootPath, new_name: str) -> None:
        self._request(
            "PUT",
            f"/nfs/directory/{root.value}/{_quote(path)}",
            json={"name": new_name},
        )

    def move_directory(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        self._move("/nfs/movedir", src_root, src_path, dst_root, dst_path)

    def create_file(
        self, path: str, body: bytes, root: RootPath, is_private: bool
    ) -> None:
        self._request(
            "POST",
            f"/nfs/file/{root.value}/{_quote(path)}",
            data=ensure_body(body),
            params={"isPrivate": "true" if is_private else "false"},
            headers={"Content-Type": "application/octet-stream"},
        )

    def get_file(self, path: str, root: RootPath) -> bytes:
        return self._request("GET", f"/nfs/file/{root.value}/{_quote(path)}").content

    def delete_file(self, path: str, root: RootPath) -> None:
        self._request("DELETE", f"/nfs/file/{root.value}/{_quote(path)}")

    def rename_file(self, path: str, root: RootPath, new_name: str) -> None:
        self._request(
            "PUT",
            f"/nfs/file/metadata/{root.value}/{_quote(path)}",
            json={"name": new_name},
        )

    def move_file(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        self._move("/nfs/movefile", src_root, src_path, dst_root, dst_path)

    def _move(
        self,
        endpoint: str,
        src_root: RootPath,
        src_path: str,
        dst_root: RootPath,
        dst_path: str,
    ) -> None:
        self._request(
            "POST",
            endpoint,
            json={
                "srcRootPath": src_root.value,
                "srcPath": src_path,
                "destRootPath": dst_root.value,
                "destPath": dst_path,
                "action": "move",
            },
        )

    # ------------------------------------------------------------------
    # DNS
    # ------------------------------------------------------------------

    def list_long_names(self) -> List[str]:
        return list(self._request("GET", "/dns").json())

    def list_services(self, long_name: str) -> List[str]:
        return list(self._request("GET", f"/dns/{_quote(long_name)}").json())

    def get_home_directory(self, long_name: str, service_name: str) -> DirectoryListing:
        resp = self._request(
            "GET", f"/dns/{_quote(service_name)}/{_quote(long_name)}", auth=False
        )
        return DirectoryListing.model_validate(resp.json())

    def get_file_unauth(self, long_name: str, service_name: str, path: str) -> bytes:
        resp = self._request(
            "GET",
            f"/dns/{_quote(service_name)}/{_quote(long_name)}/{_quote(path)}",
            auth=False,
        )
        return resp.content
