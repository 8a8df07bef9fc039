"""Cycle-detecting topological sort over a build graph.

Edge (u, v) means u depends on v, so v is ordered before u.
"""

from typing import Dict, Hashable, Iterable, List, Set, Tuple, TypeVar

from meshbuild.kernel.errors import CycleError

N = TypeVar("N", bound=Hashable)

WHITE = 0  # Unvisited
GRAY = 1   # On the current DFS path
BLACK = 2  # Finished


def _adjacency(nodes: Iterable[N], edges: Iterable[Tuple[N, N]]) -> Dict[N, List[N]]:
    adjacency: Dict[N, Set[N]] = {node: set() for node in nodes}
    for src, dst in edges:
        adjacency.setdefault(src, set()).add(dst)
        adjacency.setdefault(dst, set())
    # Sort for deterministic order
    return {node: sorted(deps, key=str) for node, deps in adjacency.items()}


def _normalize_cycle(cycle: List[N]) -> Tuple[str, ...]:
    """Rotate a closed cycle to start at its smallest node, for duplicate detection."""
    open_path = [str(node) for node in cycle[:-1]]
    start = min(range(len(open_path)), key=lambda i: open_path[i])
    return tuple(open_path[start:] + open_path[:start])


def _walk(adjacency: Dict[N, List[N]]) -> Tuple[List[N], List[List[N]]]:
    """Three-color DFS from every unvisited node.

    Returns the post-order (dependencies first) and every distinct cycle
    found. Uses an explicit stack, so graph depth is not bounded by the
    interpreter's recursion limit.
    """
    color = {node: WHITE for node in adjacency}
    order: List[N] = []
    cycles: List[List[N]] = []
    seen_cycles: Set[Tuple[str, ...]] = set()

    for start in sorted(adjacency, key=str):
        if color[start] != WHITE:
            continue
        color[start] = GRAY
        path = [start]
        stack = [(start, iter(adjacency[start]))]

        while stack:
            node, children = stack[-1]
            descended = False
            for child in children:
                if color[child] == WHITE:
                    color[child] = GRAY
                    path.append(child)
                    stack.append((child, iter(adjacency[child])))
                    descended = True
                    break
                if color[child] == GRAY:
                    cycle = path[path.index(child):] + [child]
                    normalized = _normalize_cycle(cycle)
                    if normalized not in seen_cycles:
                        seen_cycles.add(normalized)
                        cycles.append(cycle)
            if not descended:
                stack.pop()
                path.pop()
                color[node] = BLACK
                order.append(node)

    return order, cycles


def find_cycles(nodes: Iterable[N], edges: Iterable[Tuple[N, N]]) -> List[List[str]]:
    """Return every distinct cycle as a closed path of node names (first node repeated last)."""
    _, cycles = _walk(_adjacency(nodes, edges))
    return [[str(node) for node in cycle] for cycle in cycles]


def topological_sort(nodes: Iterable[N], edges: Iterable[Tuple[N, N]]) -> List[N]:
    """Linearize a graph so that every dependency precedes its dependents.

    Identical graphs always produce identical orders.

    Raises:
        CycleError: Listing every cycle found; no order is returned.
    """
    order, cycles = _walk(_adjacency(nodes, edges))
    if cycles:
        raise CycleError([[str(node) for node in cycle] for cycle in cycles])
    return order
