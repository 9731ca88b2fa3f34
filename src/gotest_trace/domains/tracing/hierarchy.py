"""Prefix tree over package import paths."""

from typing import Dict, Iterable, Iterator, Optional

from loguru import logger

from gotest_trace.domains.tracing.exceptions import HierarchyInsertionMismatch

SEPARATOR = "/"


def common_prefix(keys: Iterable[str]) -> str:
    """Longest common prefix of ``keys``, without a trailing separator.

    The prefix is computed per character, so it may end in the middle of a
    path segment (``example.com/ab`` for ``example.com/abc`` and
    ``example.com/abd``).
    """
    candidate: Optional[str] = None
    for key in keys:
        # Seed with the first key, then narrow for every other key.
        if candidate is None:
            candidate = key
            continue
        while candidate and not key.startswith(candidate):
            candidate = candidate[:-1]

    if candidate is None:
        return ""
    return candidate.rstrip(SEPARATOR)


class PrefixTreeNode:
    """A node of the package hierarchy, named by its full path.

    Whether a node is backed by collected events or only groups its children
    is decided by whoever walks the tree, by looking the name up.
    """

    def __init__(self, name: str):
        self.name = name
        self.children: Dict[str, "PrefixTreeNode"] = {}

    def __repr__(self) -> str:
        return f"PrefixTreeNode({self.name!r}, children={sorted(self.children)!r})"

    def add(self, full_key: str) -> bool:
        """Insert ``full_key`` below this node, returning False if it is not below it."""
        if not full_key.startswith(self.name):
            return False
        if full_key == self.name:
            return True

        remainder = full_key[len(self.name):]
        if remainder.startswith(SEPARATOR):
            remainder = remainder[len(SEPARATOR):]

        if SEPARATOR not in remainder:
            child = self.children.get(full_key)
            if child is None:
                self.children[full_key] = PrefixTreeNode(full_key)
            return True

        rest = remainder.split(SEPARATOR, 1)[1]
        child_key = full_key[:len(full_key) - len(rest) - len(SEPARATOR)]
        child = self.children.get(child_key)
        if child is None:
            child = self.children[child_key] = PrefixTreeNode(child_key)
        return child.add(full_key)

    def walk(self) -> Iterator["PrefixTreeNode"]:
        """This node and every descendant, depth first."""
        yield self
        for child in self.children.values():
            yield from child.walk()


def build_hierarchy(keys: Iterable[str]) -> PrefixTreeNode:
    """Build the prefix tree whose leaves are exactly ``keys``."""
    keys = list(keys)
    root = PrefixTreeNode(common_prefix(keys))
    logger.debug(f"Hierarchy root {root.name!r} for {len(keys)} package(s)")
    for key in keys:
        if not root.add(key):
            raise HierarchyInsertionMismatch(key, root.name)
    return root
