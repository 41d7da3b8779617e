"""
Directory cache -- an in-memory mirror of the remote hierarchy.

One CacheTree exists per namespace. Each node holds the folders, files
and symlinks found by the last listing of that directory plus a
``valid`` flag; ``valid=False`` means the children must be fetched
again before they can be trusted. There is no TTL.

Names are keyed by their sha256 hex digest so arbitrary path segments
become uniform dictionary keys.

All node access goes through the tree's lock. The lock is never held
across a backend call.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import CacheEntry, EntryKind
from .router import parse_path

logger = logging.getLogger("safevfs.cache")


def hash_name(name: str) -> str:
    """Stable fixed-width key for a path segment."""
    return hashlib.sha256(name.encode("utf-8")).hexdigest()


@dataclass
class CacheNode:
    """One directory of a cache tree."""

    folders: Dict[str, CacheEntry] = field(default_factory=dict)
    files: Dict[str, CacheEntry] = field(default_factory=dict)
    symlinks: Dict[str, CacheEntry] = field(default_factory=dict)
    valid: bool = False
    # Bumped on every invalidation so a listing that raced one can tell.
    generation: int = 0
    children: Dict[str, "CacheNode"] = field(default_factory=dict)

    def bucket(self, kind: EntryKind) -> Dict[str, CacheEntry]:
        if kind is EntryKind.FOLDER:
            return self.folders
        if kind is EntryKind.SYMLINK:
            return self.symlinks
        return self.files

    def names(self) -> List[str]:
        """Display names of all children: folders, then files, then symlinks."""
        return [
            e.name
            for bucket in (self.folders, self.files, self.symlinks)
            for e in bucket.values()
        ]


class CacheTree:
    """Hash-keyed tree of CacheNodes for a single namespace.

    Args:
        label: Name used in log messages (usually the namespace tag).
    """

    def __init__(self, label: str = "") -> None:
        self.label = label
        self.lock = threading.RLock()
        self._root = CacheNode()

    def find_or_create_node(self, path: str) -> CacheNode:
        """Walk to the node for ``path``, creating missing nodes on the way.

        Never fails; a freshly created node is invalid.
        """
        with self.lock:
            current = self._root
            for segment in parse_path(path):
                key = hash_name(segment)
                child = current.children.get(key)
                if child is None:
                    child = CacheNode()
                    current.children[key] = child
                current = child
            return current

    def put(self, kind: EntryKind, path: str, name: str, entry: CacheEntry) -> CacheEntry:
        """Insert ``entry`` as ``name`` in the ``kind`` bucket of ``path``.

        Folder inserts also pre-initialise the child node as empty and
        invalid.
        """
        with self.lock:
            node = self.find_or_create_node(path)
            key = hash_name(name)
            node.bucket(kind)[key] = entry
            if kind is EntryKind.FOLDER:
                child = node.children.get(key)
                if child is None:
                    node.children[key] = CacheNode()
                else:
                    self._drop(child)
            return entry

    def get(self, kind: EntryKind, path: str, name: str) -> Optional[CacheEntry]:
        """Point lookup of ``name`` in the ``kind`` bucket of ``path``."""
        with self.lock:
            node = self.find_or_create_node(path)
            return node.bucket(kind).get(hash_name(name))

    def is_valid(self, path: str) -> bool:
        with self.lock:
            return self.find_or_create_node(path).valid

    def names(self, path: str) -> List[str]:
        with self.lock:
            return self.find_or_create_node(path).names()

    def generation(self, path: str) -> int:
        with self.lock:
            return self.find_or_create_node(path).generation

    def reset(self, path: str) -> None:
        """Clear every bucket of ``path`` and mark it invalid."""
        with self.lock:
            self._clear(self.find_or_create_node(path))

    def discard(self, path: str) -> None:
        """Forget everything cached at and below ``path``.

        Used when the backend reports the directory as gone.
        """
        with self.lock:
            self._drop(self.find_or_create_node(path))
        logger.debug("Discarded %s:%s", self.label, path)

    def prune(self, path: str) -> None:
        """Forget the subtrees of folders no longer listed under ``path``."""
        with self.lock:
            node = self.find_or_create_node(path)
            for key, child in node.children.items():
                if key not in node.folders:
                    self._drop(child)

    def invalidate(self, path: str) -> None:
        """Mark ``path`` stale so the next read relists it."""
        with self.lock:
            node = self.find_or_create_node(path)
            node.valid = False
            node.generation += 1
        logger.debug("Invalidated %s:%s", self.label, path)

    def mark_valid(self, path: str, generation: int) -> bool:
        """Mark ``path`` valid unless it was invalidated since ``generation``.

        Returns:
            True if the node is now valid.
        """
        with self.lock:
            node = self.find_or_create_node(path)
            if node.generation != generation:
                logger.debug(
                    "Listing of %s:%s raced an invalidation; leaving it stale",
                    self.label,
                    path,
                )
                return False
            node.valid = True
            return True

    @staticmethod
    def _clear(node: CacheNode) -> None:
        node.folders = {}
        node.files = {}
        node.symlinks = {}
        node.valid = False

    @classmethod
    def _drop(cls, node: CacheNode) -> None:
        # Nodes are kept, not deleted, so in-flight listings still see the
        # generation bump.
        cls._clear(node)
        node.generation += 1
        for child in node.children.values():
            cls._drop(child)
