"""
Tests for staged file handles: preload, buffered writes, flush on close.
"""

from __future__ import annotations

import errno

import pytest

from safevfs.errors import BackendError, StagedFlushError
from safevfs.models import RootPath
from safevfs.vfs import SafeVFS

from conftest import FakeBackend


def _write_file(vfs: SafeVFS, path: str, data: bytes, mode: str = "w") -> None:
    handle = vfs.raw_open(path, mode)
    vfs.raw_write(handle, 0, data)
    vfs.raw_close(handle)


def _read_file(vfs: SafeVFS, path: str, size: int = 1024, offset: int = 0) -> bytes:
    handle = vfs.raw_open(path, "r")
    try:
        return vfs.raw_read(handle, offset, size)
    finally:
        vfs.raw_close(handle)


class TestOpen:
    """Tests for open-time gates."""

    def test_missing_file_read_only(self, populated: SafeVFS) -> None:
        with pytest.raises(OSError) as exc_info:
            populated.raw_open("/private/notes/ghost.txt", "r")
        assert exc_info.value.errno == errno.ENOENT

    def test_write_under_outside_rejected(self, vfs: SafeVFS) -> None:
        with pytest.raises(OSError) as exc_info:
            vfs.raw_open("/outside/www.example/index.html", "w")
        assert exc_info.value.errno == errno.EPERM

    def test_write_at_public_root_rejected(self, vfs: SafeVFS) -> None:
        with pytest.raises(OSError) as exc_info:
            vfs.raw_open("/public/readme.txt", "w")
        assert exc_info.value.errno == errno.EPERM

    def test_directory(self, populated: SafeVFS) -> None:
        with pytest.raises(OSError) as exc_info:
            populated.raw_open("/private/notes", "r")
        assert exc_info.value.errno == errno.EISDIR

    def test_flags_start_clear(self, populated: SafeVFS) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "r")
        assert handle.existed is True
        assert handle.contents_loaded is False
        assert handle.contents_changed is False
        populated.raw_close(handle)


class TestReadWrite:
    """Tests for read, write and the write/read scenario."""

    def test_write_then_read_back(self, populated: SafeVFS, backend: FakeBackend) -> None:
        data = b"0123456789"
        _write_file(populated, "/private/notes/new.txt", data)

        assert _read_file(populated, "/private/notes/new.txt", size=10) == data
        assert backend.files[(RootPath.DRIVE, "/notes/new.txt")][1] is True

    def test_new_file_listed_exactly_once(self, populated: SafeVFS, backend: FakeBackend) -> None:
        populated.contents("/private/notes")
        backend.reset_calls()

        _write_file(populated, "/private/notes/new.txt", b"0123456789")
        names = populated.contents("/private/notes")

        assert names.count("new.txt") == 1
        assert backend.calls["list_directory"] == 1

    def test_read_fetches_body_once(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "r")
        assert populated.raw_read(handle, 0, 2) == b"mi"
        assert populated.raw_read(handle, 2, 10) == b"lk\n"
        assert backend.calls["get_file"] == 1
        assert handle.contents_loaded is True
        populated.raw_close(handle)

    def test_read_only_close_does_not_publish(
        self, populated: SafeVFS, backend: FakeBackend
    ) -> None:
        _read_file(populated, "/private/notes/todo.txt")
        assert backend.calls["delete_file"] == 0
        assert backend.calls["create_file"] == 0

    def test_write_on_read_handle_rejected(self, populated: SafeVFS) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "r")
        with pytest.raises(OSError) as exc_info:
            populated.raw_write(handle, 0, b"x")
        assert exc_info.value.errno == errno.EPERM
        populated.raw_close(handle)

    def test_rw_preloads_before_write(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "rw")
        populated.raw_write(handle, 0, b"s")
        populated.raw_close(handle)

        assert backend.body("/notes/todo.txt") == b"silk\n"

    def test_append_mode(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "a")
        populated.raw_write(handle, 5, b"eggs\n")
        populated.raw_close(handle)

        assert backend.body("/notes/todo.txt") == b"milk\neggs\n"

    def test_write_mode_does_not_preload(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "w")
        populated.raw_write(handle, 0, b"tea")
        populated.raw_close(handle)

        assert backend.calls["get_file"] == 0
        assert backend.body("/notes/todo.txt") == b"tea"

    def test_outside_read_uses_unauthenticated_fetch(
        self, vfs: SafeVFS, backend: FakeBackend
    ) -> None:
        backend.add_dir("/www-home")
        backend.add_file("/www-home/index.html", b"<p>hello</p>")
        backend.add_service("example", "www", "/www-home")

        handle = vfs.raw_open("/outside/www.example/index.html", "r")
        assert (handle.service_name, handle.long_name) == ("www", "example")
        assert vfs.raw_read(handle, 0, 100) == b"<p>hello</p>"
        assert backend.calls["get_file_unauth"] == 1
        assert backend.calls["get_file"] == 0
        vfs.raw_close(handle)


class TestClose:
    """Tests for publishing on close."""

    def test_empty_new_file_gets_newline(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/blank.txt", "w")
        populated.raw_close(handle)

        assert backend.body("/notes/blank.txt") == b"\n"
        assert _read_file(populated, "/private/notes/blank.txt") == b"\n"

    def test_truncated_to_zero_writes_newline(
        self, populated: SafeVFS, backend: FakeBackend
    ) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "rw")
        populated.raw_truncate(handle, 0)
        populated.raw_close(handle)

        assert backend.body("/notes/todo.txt") == b"\n"

    def test_truncate_extends_with_zeros(self, populated: SafeVFS, backend: FakeBackend) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "rw")
        populated.raw_truncate(handle, 7)
        populated.raw_close(handle)

        assert backend.body("/notes/todo.txt") == b"milk\n\0\0"

    def test_existing_file_replaced_whole(self, populated: SafeVFS, backend: FakeBackend) -> None:
        _write_file(populated, "/private/notes/todo.txt", b"bread")

        assert backend.calls["delete_file"] == 1
        assert backend.calls["create_file"] == 1
        assert backend.body("/notes/todo.txt") == b"bread"

    def test_recreate_failure_is_staged_flush_error(
        self, populated: SafeVFS, backend: FakeBackend
    ) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "w")
        populated.raw_write(handle, 0, b"bread")
        backend.fail["create_file"] = BackendError(errno.EIO, "launcher went away")

        with pytest.raises(StagedFlushError) as exc_info:
            populated.raw_close(handle)

        assert exc_info.value.errno == errno.EIO
        assert backend.body("/notes/todo.txt") is None
        assert handle.closed is True

    def test_create_failure_on_new_file_is_plain_error(
        self, populated: SafeVFS, backend: FakeBackend
    ) -> None:
        handle = populated.raw_open("/private/notes/new.txt", "w")
        populated.raw_write(handle, 0, b"x")
        backend.fail["create_file"] = BackendError(errno.EACCES, "denied")

        with pytest.raises(BackendError) as exc_info:
            populated.raw_close(handle)

        assert not isinstance(exc_info.value, StagedFlushError)
        assert handle.closed is True

    def test_closed_handle_rejects_io(self, populated: SafeVFS) -> None:
        handle = populated.raw_open("/private/notes/todo.txt", "r")
        populated.raw_close(handle)
        populated.raw_close(handle)
        with pytest.raises(OSError) as exc_info:
            populated.raw_read(handle, 0, 1)
        assert exc_info.value.errno == errno.EBADF
