"""Commit ancestry over a parent graph.

The graph is a mapping of commit id -> parent ids, as produced by
``git rev-list --parents``. Commits missing from the mapping are treated as
roots.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence

from .errors import NoCommonAncestorError

ParentGraph = Mapping[str, Sequence[str]]


def ancestors(commit: str, parents: ParentGraph) -> dict[str, int]:
    """All ancestors of ``commit`` (itself included) with their BFS distance."""
    seen = {commit: 0}
    queue = deque([commit])
    while queue:
        current = queue.popleft()
        for parent in parents.get(current, ()):
            if parent not in seen:
                seen[parent] = seen[current] + 1
                queue.append(parent)
    return seen


def is_ancestor(candidate: str, descendant: str, parents: ParentGraph) -> bool:
    """True if ``candidate`` is reachable from ``descendant`` (or is it)."""
    if candidate == descendant:
        return True
    seen = {descendant}
    queue = deque([descendant])
    while queue:
        for parent in parents.get(queue.popleft(), ()):
            if parent == candidate:
                return True
            if parent not in seen:
                seen.add(parent)
                queue.append(parent)
    return False


def find_merge_base(head: str, base: str, parents: ParentGraph) -> str:
    """Nearest common ancestor of ``head`` and ``base``.

    Tries the cheap cases first: ``base`` is an ancestor of ``head`` (the
    usual feature-branch layout), then the reverse. Otherwise intersects
    both ancestor sets and keeps the candidates that no other candidate
    descends from; ties go to the one closest to both tips.

    Raises NoCommonAncestorError when the histories are disjoint.
    """
    if is_ancestor(base, head, parents):
        return base
    if is_ancestor(head, base, parents):
        return head

    head_ancestors = ancestors(head, parents)
    base_ancestors = ancestors(base, parents)
    common = set(head_ancestors) & set(base_ancestors)
    if not common:
        raise NoCommonAncestorError(
            f"no common ancestor between {head[:12]} and {base[:12]}"
        )

    # Drop every candidate that is a strict ancestor of another candidate
    redundant: set[str] = set()
    for commit in common:
        if commit in redundant:
            continue
        for older in ancestors(commit, parents):
            if older != commit and older in common:
                redundant.add(older)
    best = common - redundant

    return min(
        best,
        key=lambda c: (head_ancestors[c] + base_ancestors[c], c),
    )
