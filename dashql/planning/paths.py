"""Shortest join paths over the relation graph."""

from collections import deque
from typing import List, Optional

from ..schema.relations import RelationGraph


class PathResolver:
    """Breadth-first search over the undirected relation graph.

    Neighbours are expanded in relation declaration order, so when several
    shortest paths exist the same one is always returned.
    """

    def __init__(self, graph: RelationGraph):
        self.graph = graph

    def find_path(self, start: str, end: str) -> Optional[List[str]]:
        """Shortest entity path from ``start`` to ``end``, or None if disconnected."""
        if start == end:
            return [start]
        if start not in self.graph or end not in self.graph:
            return None

        visited = {start}
        queue = deque([[start]])

        while queue:
            path = queue.popleft()
            for neighbor in self.graph.neighbors(path[-1]):
                if neighbor in visited:
                    continue
                if neighbor == end:
                    return path + [neighbor]
                visited.add(neighbor)
                queue.append(path + [neighbor])

        return None

    def distance(self, start: str, end: str) -> Optional[int]:
        """Number of joins between two entities."""
        path = self.find_path(start, end)
        return len(path) - 1 if path is not None else None
