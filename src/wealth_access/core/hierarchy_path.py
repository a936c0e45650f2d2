"""Materialized hierarchy path helpers.

A path is the '/'-joined chain of user ids from the root down to the node,
always starting with the delimiter: a root user with id 7 has path ``/7``,
its child 12 has ``/7/12``. Descendant queries become prefix matches on
``<path>/``, so the trailing delimiter keeps ``/10`` out of ``/1``'s subtree.

Pure functions only; nothing here touches the database.
"""
from __future__ import annotations

DELIMITER = "/"


def segment_for(user_id: int) -> str:
    """Path segment of a node."""
    return str(user_id)


def child_path(parent_path: str | None, segment: str) -> str:
    """Join ``segment`` under ``parent_path`` with exactly one delimiter.

    A missing or empty parent path yields a root path.
    """
    head = (parent_path or "").rstrip(DELIMITER)
    tail = str(segment).strip(DELIMITER)
    return f"{head}{DELIMITER}{tail}"


def descendant_prefix(path: str) -> str:
    """Prefix every strict descendant path starts with."""
    return path.rstrip(DELIMITER) + DELIMITER


def is_descendant_of(candidate_path: str | None, ancestor_path: str | None) -> bool:
    """True if ``candidate_path`` is ``ancestor_path`` or lies below it.

    The match is delimiter-aligned: ``/10`` is not below ``/1``.
    """
    if not candidate_path or not ancestor_path:
        return False
    ancestor = ancestor_path.rstrip(DELIMITER)
    candidate = candidate_path.rstrip(DELIMITER)
    return candidate == ancestor or candidate.startswith(ancestor + DELIMITER)


def is_strict_descendant_of(candidate_path: str | None, ancestor_path: str | None) -> bool:
    """Like :func:`is_descendant_of` but excludes the node itself."""
    if not candidate_path or not ancestor_path:
        return False
    return candidate_path.rstrip(DELIMITER) != ancestor_path.rstrip(DELIMITER) and is_descendant_of(
        candidate_path, ancestor_path
    )


def split_path(path: str | None) -> list[int]:
    """Ids on the path, root first."""
    if not path:
        return []
    return [int(part) for part in path.split(DELIMITER) if part]


def depth_of(path: str | None) -> int:
    """Hierarchy level encoded by ``path`` (0 for a root)."""
    return max(len(split_path(path)) - 1, 0)
