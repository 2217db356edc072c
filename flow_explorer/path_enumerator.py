"""Turns an exploration graph into test paths.

Every path is a simple path (no repeated state) listed as fingerprints. Each
start node gets a fresh visited set: sharing one across starts would silently
drop valid paths whose prefix touches a node already seen from an earlier start.
Children are walked in the order their transitions were discovered, so a fixed
crawl trace always yields the same path list.
"""

from __future__ import annotations

from typing import AbstractSet, Callable, List, Optional

from .knowledge import Action, ExplorationGraph, Navigate, State

Path = List[str]


def _dfs(
    graph: ExplorationGraph,
    current: State,
    visited: set[str],
    path: Path,
    out: List[Path],
    allowed: Optional[Callable[[str], bool]],
) -> None:
    path.append(current.fingerprint)
    visited.add(current.fingerprint)
    out.append(list(path))
    for child in graph.children_of(current):
        if child.fingerprint in visited:
            continue
        if allowed is not None and not allowed(child.fingerprint):
            continue
        _dfs(graph, child, visited, path, out, allowed)
    # backtrack so sibling branches may reuse this node
    path.pop()
    visited.discard(current.fingerprint)


def paths_from(graph: ExplorationGraph, start: State | str) -> List[Path]:
    """All simple paths starting at `start`, including the single-node path."""
    state = graph.get_state(start) if isinstance(start, str) else start
    if state is None:
        return []
    out: List[Path] = []
    _dfs(graph, state, set(), [], out, None)
    return out


def all_paths(graph: ExplorationGraph) -> List[Path]:
    """Simple paths from every discovered state, not only the crawl's start URL."""
    out: List[Path] = []
    for state in graph.all_states():
        _dfs(graph, state, set(), [], out, None)
    return out


def paths_for_workflow(graph: ExplorationGraph, members: AbstractSet[str] | List[str]) -> List[Path]:
    """Like `all_paths`, restricted to states in `members` and started from each member."""
    member_set = frozenset(members)
    out: List[Path] = []
    for state in graph.all_states():
        if state.fingerprint not in member_set:
            continue
        _dfs(graph, state, set(), [], out, member_set.__contains__)
    return out


def path_actions(graph: ExplorationGraph, path: Path) -> List[Action]:
    """Replayable actions for `path`: open the first state, then the first-discovered edge per hop."""
    if not path:
        return []
    first = graph.get_state(path[0])
    if first is None:
        raise KeyError(path[0])
    actions: List[Action] = [Navigate(url=first.url)]
    for src, dst in zip(path, path[1:]):
        edges = graph.transitions_between(src, dst)
        if not edges:
            raise ValueError(f"no transition {src} -> {dst}")
        actions.append(edges[0])
    return actions
