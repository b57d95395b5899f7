"""
Update path resolution over a discovered patch set.
"""

from typing import Iterable, List

from .models import PatchEdge


def resolve_update_path(installed: int, target: int,
                        edges: Iterable[PatchEdge]) -> List[PatchEdge]:
    """
    Choose the patches that move an install from ``installed`` to ``target``.

    Returns an empty list when nothing needs to happen, the direct patch when
    the server hosts one, otherwise a greedy chain taking the largest hop
    available at each step. When the chain dead-ends the result is a single
    full install of ``target``.

    The greedy walk favours fewer hops, not the smallest total download.
    """
    if installed >= target:
        return []

    available = frozenset(edges)
    direct = PatchEdge(installed, target)
    if direct in available:
        return [direct]

    by_source = {}
    for edge in available:
        if edge.target <= target:
            best = by_source.get(edge.source)
            if best is None or edge.target > best.target:
                by_source[edge.source] = edge

    path: List[PatchEdge] = []
    current = installed
    while current < target:
        best = by_source.get(current)
        if best is None:
            return [PatchEdge(0, target)]
        path.append(best)
        current = best.target

    return path
