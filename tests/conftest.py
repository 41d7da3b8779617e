"""Shared test fixtures for safevfs."""

from __future__ import annotations

import errno
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from safevfs.backend import StorageBackend
from safevfs.errors import BackendError, BackendNotFoundError
from safevfs.models import BackendItem, DirectoryListing, RootPath
from safevfs.router import join_path, parse_path
from safevfs.vfs import SafeVFS

MOUNT_POINT = "/mnt/safe"
TIMESTAMP = "2024-01-02T03:04:05.000Z"


def _split(path: str) -> Tuple[str, str]:
    parts = parse_path(path)
    return join_path(*parts[:-1]), parts[-1] if parts else ""


class FakeBackend(StorageBackend):
    """In-memory StorageBackend that counts every call.

    Directories and files are keyed by ``(root, path)``. The root
    directory of each storage root always exists. Like the real network
    it rejects empty bodies and refuses to create over an existing file.
    """

    def __init__(self) -> None:
        self.calls: Counter = Counter()
        self.dirs: Dict[Tuple[RootPath, str], bool] = {
            (RootPath.DRIVE, "/"): False,
            (RootPath.APP, "/"): True,
        }
        self.files: Dict[Tuple[RootPath, str], Tuple[bytes, bool]] = {}
        self.dns: Dict[str, Dict[str, str]] = {}
        self.fail: Dict[str, BaseException] = {}

    # -- seeding (not counted) -------------------------------------------

    def add_dir(self, path: str, is_private: bool = False, root: RootPath = RootPath.DRIVE) -> None:
        self.dirs[(root, join_path(path))] = is_private

    def add_file(
        self,
        path: str,
        body: bytes = b"data",
        is_private: bool = False,
        root: RootPath = RootPath.DRIVE,
    ) -> None:
        self.files[(root, join_path(path))] = (body, is_private)

    def add_service(self, long_name: str, service_name: str, home: str) -> None:
        """Publish ``service_name.long_name`` with its home at drive path ``home``."""
        self.dns.setdefault(long_name, {})[service_name] = join_path(home)

    def body(self, path: str, root: RootPath = RootPath.DRIVE) -> Optional[bytes]:
        entry = self.files.get((root, join_path(path)))
        return entry[0] if entry else None

    def reset_calls(self) -> None:
        self.calls.clear()

    # -- helpers -----------------------------------------------------------

    def _record(self, name: str) -> None:
        self.calls[name] += 1
        if name in self.fail:
            raise self.fail[name]

    def _children(self, root: RootPath, path: str) -> Tuple[List[str], List[str]]:
        dirs = [p for (r, p) in self.dirs if r is root and p != "/" and _split(p)[0] == path]
        files = [p for (r, p) in self.files if r is root and _split(p)[0] == path]
        return sorted(dirs), sorted(files)

    def _listing(self, root: RootPath, path: str) -> DirectoryListing:
        path = join_path(path)
        if (root, path) not in self.dirs:
            raise BackendNotFoundError("Directory not found", path)
        dirs, files = self._children(root, path)
        return DirectoryListing(
            info=BackendItem(name=_split(path)[1], is_private=self.dirs[(root, path)]),
            files=[
                BackendItem(
                    name=_split(p)[1],
                    size=len(self.files[(root, p)][0]),
                    created_on=TIMESTAMP,
                    modified_on=TIMESTAMP,
                    is_private=self.files[(root, p)][1],
                )
                for p in files
            ],
            sub_directories=[
                BackendItem(
                    name=_split(p)[1],
                    created_on=TIMESTAMP,
                    modified_on=TIMESTAMP,
                    is_private=self.dirs[(root, p)],
                )
                for p in dirs
            ],
        )

    def _require_parent(self, root: RootPath, path: str) -> None:
        if (root, _split(path)[0]) not in self.dirs:
            raise BackendNotFoundError("Parent not found", path)

    def _move_tree(self, root: RootPath, src: str, dst: str) -> None:
        for store in (self.dirs, self.files):
            for (r, p) in list(store):
                if r is root and (p == src or p.startswith(src + "/")):
                    store[(r, dst + p[len(src):])] = store.pop((r, p))

    # -- drive -------------------------------------------------------------

    def list_directory(self, path: str, root: RootPath) -> DirectoryListing:
        self._record("list_directory")
        return self._listing(root, path)

    def create_directory(self, path: str, root: RootPath, is_private: bool) -> None:
        self._record("create_directory")
        path = join_path(path)
        self._require_parent(root, path)
        if (root, path) in self.dirs:
            raise BackendError(errno.EEXIST, "Directory exists", path)
        self.dirs[(root, path)] = is_private

    def delete_directory(self, path: str, root: RootPath) -> None:
        self._record("delete_directory")
        path = join_path(path)
        if (root, path) not in self.dirs:
            raise BackendNotFoundError("Directory not found", path)
        for store in (self.dirs, self.files):
            for (r, p) in list(store):
                if r is root and (p == path or p.startswith(path + "/")):
                    del store[(r, p)]

    def rename_directory(self, path: str, root: RootPath, new_name: str) -> None:
        self._record("rename_directory")
        path = join_path(path)
        if (root, path) not in self.dirs:
            raise BackendNotFoundError("Directory not found", path)
        self._move_tree(root, path, join_path(_split(path)[0], new_name))

    def move_directory(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        self._record("move_directory")
        src = join_path(src_path)
        if (src_root, src) not in self.dirs:
            raise BackendNotFoundError("Directory not found", src)
        self._move_tree(src_root, src, join_path(dst_path, _split(src)[1]))

    def create_file(self, path: str, body: bytes, root: RootPath, is_private: bool) -> None:
        self._record("create_file")
        path = join_path(path)
        if not body:
            raise BackendError(errno.EINVAL, "Empty body", path)
        self._require_parent(root, path)
        if (root, path) in self.files:
            raise BackendError(errno.EEXIST, "File exists", path)
        self.files[(root, path)] = (bytes(body), is_private)

    def get_file(self, path: str, root: RootPath) -> bytes:
        self._record("get_file")
        path = join_path(path)
        if (root, path) not in self.files:
            raise BackendNotFoundError("File not found", path)
        return self.files[(root, path)][0]

    def delete_file(self, path: str, root: RootPath) -> None:
        self._record("delete_file")
        path = join_path(path)
        if (root, path) not in self.files:
            raise BackendNotFoundError("File not found", path)
        del self.files[(root, path)]

    def rename_file(self, path: str, root: RootPath, new_name: str) -> None:
        self._record("rename_file")
        path = join_path(path)
        if (root, path) not in self.files:
            raise BackendNotFoundError("File not found", path)
        self.files[(root, join_path(_split(path)[0], new_name))] = self.files.pop((root, path))

    def move_file(
        self, src_root: RootPath, src_path: str, dst_root: RootPath, dst_path: str
    ) -> None:
        self._record("move_file")
        src = join_path(src_path)
        if (src_root, src) not in self.files:
            raise BackendNotFoundError("File not found", src)
        self.files[(dst_root, join_path(dst_path, _split(src)[1]))] = self.files.pop((src_root, src))

    # -- dns ---------------------------------------------------------------

    def list_long_names(self) -> List[str]:
        self._record("list_long_names")
        return sorted(self.dns)

    def list_services(self, long_name: str) -> List[str]:
        self._record("list_services")
        if long_name not in self.dns:
            raise BackendNotFoundError("Long name not found", long_name)
        return sorted(self.dns[long_name])

    def _home(self, long_name: str, service_name: str) -> str:
        try:
            return self.dns[long_name][service_name]
        except KeyError:
            raise BackendNotFoundError("Service not found", f"{service_name}.{long_name}") from None

    def get_home_directory(self, long_name: str, service_name: str) -> DirectoryListing:
        self._record("get_home_directory")
        return self._listing(RootPath.DRIVE, self._home(long_name, service_name))

    def get_file_unauth(self, long_name: str, service_name: str, path: str) -> bytes:
        self._record("get_file_unauth")
        full = join_path(self._home(long_name, service_name), path)
        if (RootPath.DRIVE, full) not in self.files:
            raise BackendNotFoundError("File not found", full)
        return self.files[(RootPath.DRIVE, full)][0]


@pytest.fixture
def backend() -> FakeBackend:
    """Provide an empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def vfs(backend: FakeBackend) -> SafeVFS:
    """Provide a started SafeVFS over the fake backend."""
    fs = SafeVFS(backend, mount_point=MOUNT_POINT)
    fs.start()
    backend.reset_calls()
    return fs


@pytest.fixture
def populated(backend: FakeBackend, vfs: SafeVFS) -> SafeVFS:
    """A drive with a public and a private folder holding a few files.

    Layout::

        /            (drive root)
        ├── site/    public   index.html
        └── notes/   private  todo.txt, .SAFE_SYMLINK.latest
    """
    backend.add_dir("/site", is_private=False)
    backend.add_file("/site/index.html", b"<h1>hi</h1>", is_private=False)
    backend.add_dir("/notes", is_private=True)
    backend.add_file("/notes/todo.txt", b"milk\n", is_private=True)
    backend.add_file("/notes/.SAFE_SYMLINK.latest", b"/private/notes/todo.txt", is_private=True)
    return vfs


@pytest.fixture
def safevfs_home(tmp_path: Path) -> Path:
    """Provide a temporary safevfs home directory."""
    home = tmp_path / ".safevfs"
    home.mkdir()
    return home
