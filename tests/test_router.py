"""
Tests for path routing, domain parsing, symlink naming and legality gates.
"""

from __future__ import annotations

import errno

import pytest

from safevfs.router import (
    Namespace,
    can_delete,
    can_mkdir,
    can_rmdir,
    can_write,
    check_open,
    check_symlink,
    join_path,
    parse_domain,
    parse_path,
    route,
    split_symlink_name,
    symlink_backend_name,
)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


class TestParsePath:
    """Tests for parse_path and join_path."""

    def test_root(self) -> None:
        assert parse_path("/") == ()
        assert parse_path("") == ()

    def test_redundant_slashes_ignored(self) -> None:
        assert parse_path("//public//a/") == ("public", "a")

    def test_join_normalises(self) -> None:
        assert join_path("/a/", None, "b//c") == "/a/b/c"
        assert join_path() == "/"


# ---------------------------------------------------------------------------
# route
# ---------------------------------------------------------------------------


class TestRoute:
    """Tests for resolving virtual paths to (namespace, parent, name)."""

    def test_root_has_no_namespace(self) -> None:
        vpath = route("/")
        assert vpath.is_root
        assert vpath.namespace is None

    def test_namespace_root(self) -> None:
        vpath = route("/private")
        assert vpath.is_namespace_root
        assert vpath.namespace is Namespace.PRIVATE
        assert vpath.relative == "/"

    def test_nested_file(self) -> None:
        vpath = route("/public/a/b.txt")
        assert vpath.namespace is Namespace.PUBLIC
        assert vpath.parent == "/a"
        assert vpath.name == "b.txt"
        assert vpath.relative == "/a/b.txt"
        assert vpath.depth == 2

    def test_direct_child(self) -> None:
        vpath = route("/outside/www.example")
        assert vpath.parent == "/"
        assert vpath.name == "www.example"

    def test_unknown_namespace_is_bad_descriptor(self) -> None:
        with pytest.raises(OSError) as exc_info:
            route("/nowhere/file")
        assert exc_info.value.errno == errno.EBADF


# ---------------------------------------------------------------------------
# Domains and symlink names
# ---------------------------------------------------------------------------


class TestParseDomain:
    """Tests for splitting external-domain folder names."""

    def test_valid(self) -> None:
        assert parse_domain("www.example") == ("www", "example")

    @pytest.mark.parametrize("name", ["service", "a.b.c", ".example", "www."])
    def test_malformed(self, name: str) -> None:
        with pytest.raises(OSError) as exc_info:
            parse_domain(name)
        assert exc_info.value.errno == errno.EINVAL


class TestSymlinkNames:
    """Tests for the reserved symlink prefixes."""

    def test_public_prefix(self) -> None:
        assert symlink_backend_name(Namespace.PUBLIC, "l") == ".SAFE_SYMLINK_PUBLIC.l"

    def test_private_prefix(self) -> None:
        assert symlink_backend_name(Namespace.PRIVATE, "l") == ".SAFE_SYMLINK.l"

    def test_split_public(self) -> None:
        assert split_symlink_name(".SAFE_SYMLINK_PUBLIC.home") == (Namespace.PUBLIC, "home")

    def test_split_private(self) -> None:
        assert split_symlink_name(".SAFE_SYMLINK.home") == (Namespace.PRIVATE, "home")

    def test_split_plain_file(self) -> None:
        assert split_symlink_name("notes.txt") is None


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


class TestCapabilities:
    """Tests for can_write / can_delete / can_mkdir / can_rmdir."""

    @pytest.mark.parametrize("path", ["/public/a", "/private/a/b"])
    def test_plain_namespaces_writable(self, path: str) -> None:
        assert can_write(path)
        assert can_delete(path)

    @pytest.mark.parametrize("path", ["/", "/outside/www.example/f", "/dns/example/www"])
    def test_other_paths_not_writable(self, path: str) -> None:
        assert not can_write(path)
        assert not can_delete(path)

    def test_mkdir_only_one_level_under_outside(self) -> None:
        assert can_mkdir("/outside/www.example")
        assert not can_mkdir("/outside/www.example/sub")
        assert can_rmdir("/outside/www.example")

    def test_mkdir_never_at_root_or_dns(self) -> None:
        assert not can_mkdir("/._rfuse_check")
        assert not can_mkdir("/dns/example")
        assert can_mkdir("/public/site")


class TestCheckOpen:
    """Tests for the open-mode gate."""

    def test_read_anywhere(self) -> None:
        check_open(route("/outside/www.example/index.html"), "r")

    def test_write_outside_rejected(self) -> None:
        with pytest.raises(OSError) as exc_info:
            check_open(route("/outside/www.example/index.html"), "w")
        assert exc_info.value.errno == errno.EPERM

    def test_write_at_public_root_rejected(self) -> None:
        with pytest.raises(OSError) as exc_info:
            check_open(route("/public/file.txt"), "rw")
        assert exc_info.value.errno == errno.EPERM

    def test_write_in_public_subfolder_allowed(self) -> None:
        check_open(route("/public/site/file.txt"), "a")

    def test_write_at_private_root_allowed(self) -> None:
        check_open(route("/private/file.txt"), "w")

    def test_namespace_root_is_directory(self) -> None:
        with pytest.raises(OSError) as exc_info:
            check_open(route("/public"), "r")
        assert exc_info.value.errno == errno.EISDIR


class TestCheckSymlink:
    """Tests for the symlink gate."""

    @pytest.mark.parametrize("path", ["/public/l", "/private/a/l", "/dns/example/l"])
    def test_allowed(self, path: str) -> None:
        check_symlink(route(path))

    def test_outside_rejected(self) -> None:
        with pytest.raises(OSError) as exc_info:
            check_symlink(route("/outside/www.example/l"))
        assert exc_info.value.errno == errno.EPERM
