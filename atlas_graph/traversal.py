"""
Graph traversal over a :class:`~atlas_graph.store.GraphStore`.

Neighbour lookups, breadth-first shortest path along outgoing edges and
bounded multi-source subgraph extraction.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional

from .errors import MalformedInputError
from .models import DIRECTIONS, Edge, Neighbor, Node, Subgraph
from .store import GraphStore

logger = logging.getLogger(__name__)


class TraversalEngine:
    """
    Read-only graph queries.

    Parameters
    ----------
    store:
        The backing graph store.
    dedupe_frontier:
        When True, a node is never pushed onto a BFS queue twice.  This
        bounds queue growth on dense graphs without changing any result;
        by default the frontier is left undeduplicated and nodes are only
        marked visited when dequeued.
    """

    def __init__(self, store: GraphStore, dedupe_frontier: bool = False) -> None:
        self._store = store
        self._dedupe_frontier = dedupe_frontier

    def get_neighbors(self, node_id: str, direction: str = "both") -> list[Neighbor]:
        """
        Return the nodes adjacent to *node_id* with their connecting edges.

        ``in`` pairs each incoming edge with its source node, ``out`` pairs
        each outgoing edge with its target node, ``both`` is the in-results
        followed by the out-results, so a self-loop shows up twice.
        """
        if direction not in DIRECTIONS:
            raise MalformedInputError(
                f"Unknown direction {direction!r}; expected one of {DIRECTIONS}"
            )
        pairs: list[tuple[Edge, str]] = []
        if direction in ("in", "both"):
            pairs.extend((e, e.source_id) for e in self._store.edges_in(node_id))
        if direction in ("out", "both"):
            pairs.extend((e, e.target_id) for e in self._store.edges_out(node_id))
        nodes = self._store.get_nodes(other for _, other in pairs)
        return [
            Neighbor(node=nodes[other], edge=edge)
            for edge, other in pairs
            if other in nodes
        ]

    def find_path(
        self,
        from_id: str,
        to_id: str,
        max_depth: int = 6,
    ) -> Optional[list[Node]]:
        """
        Breadth-first search for the shortest directed path.

        Follows outgoing edges only.  Paths hold at most *max_depth* nodes.

        Returns
        -------
        list[Node] | None
            The nodes along the path, *from_id* first; None when no path
            exists within the bound or *from_id* is not a node.
        """
        _require_depth("max_depth", max_depth)
        if self._store.get_node(from_id) is None:
            return None

        visited: set[str] = set()
        enqueued: set[str] = {from_id}
        queue: deque[tuple[str, list[str]]] = deque([(from_id, [from_id])])

        while queue:
            node_id, path = queue.popleft()
            if node_id == to_id:
                nodes = self._store.get_nodes(path)
                return [nodes[nid] for nid in path if nid in nodes]
            if len(path) >= max_depth or node_id in visited:
                continue
            visited.add(node_id)
            for nbr in self.get_neighbors(node_id, "out"):
                nid = nbr.node.id
                if nid in visited:
                    continue
                if self._dedupe_frontier:
                    if nid in enqueued:
                        continue
                    enqueued.add(nid)
                queue.append((nid, path + [nid]))

        logger.debug("No path from %s to %s within %d nodes", from_id, to_id, max_depth)
        return None

    def get_subgraph(
        self,
        center_ids: list[str],
        depth: int = 2,
        include_edge_types: Optional[list[str]] = None,
    ) -> Subgraph:
        """
        Collect every node within *depth* hops of any center, in either
        direction, and the edges crossed to reach them.

        Parameters
        ----------
        center_ids:
            Starting node ids, all at depth 0.
        depth:
            Maximum hop count.  ``0`` returns only the centers.
        include_edge_types:
            When given, only edges of these types are followed and returned.
        """
        if isinstance(center_ids, str) or not isinstance(center_ids, (list, tuple)):
            raise MalformedInputError("center_ids must be a list of node ids")
        _require_depth("depth", depth)
        allowed = set(include_edge_types) if include_edge_types is not None else None

        result = Subgraph()
        visited: set[str] = set()
        seen_edges: set[str] = set()
        enqueued: set[str] = set(center_ids)
        queue: deque[tuple[str, int]] = deque((cid, 0) for cid in center_ids)

        while queue:
            node_id, current_depth = queue.popleft()
            if node_id in visited or current_depth > depth:
                continue
            visited.add(node_id)

            node = self._store.get_node(node_id)
            if node is not None:
                result.nodes.append(node)

            if current_depth >= depth:
                continue
            for nbr in self.get_neighbors(node_id, "both"):
                if allowed is not None and nbr.edge.type not in allowed:
                    continue
                if nbr.edge.id not in seen_edges:
                    seen_edges.add(nbr.edge.id)
                    result.edges.append(nbr.edge)
                nid = nbr.node.id
                if nid in visited:
                    continue
                if self._dedupe_frontier:
                    if nid in enqueued:
                        continue
                    enqueued.add(nid)
                queue.append((nid, current_depth + 1))

        return result


def _require_depth(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedInputError(f"{name} must be a non-negative integer")
