# /core/traversal.py
"""
Graph algorithms shared by every GraphStore backend.

Both functions only use the store's adjacency primitives (``edges_from`` /
``edges_to``), so the in-memory store and Neo4j behave identically.

``connected_nodes`` is a breadth-first search that treats edges as
undirected. BFS reaches every node first at its minimum depth, which is the
same result as enumerating all cycle-free paths and keeping the shallowest
occurrence of each node, without the exponential cost.

``shortest_path`` follows edges in their direction and is a uniform-cost
search over simple paths with a hop bound. Plain Dijkstra is not enough:
the cheapest path may need more hops than allowed, so a node can be
settled several times with different (weight, hops) pairs. A partial path
is pruned when an already expanded path to the same node is no heavier and
no longer. Worst case is still exponential in ``max_depth`` on dense
graphs, which is why depth is capped by ``MAX_TRAVERSAL_DEPTH``.
"""

import heapq
import itertools
from collections import deque
from typing import Dict, List, Tuple

from core.database import GraphStore
from core.exceptions import InvalidRequestError, NotFoundError
from core.models import ConnectedNode, Edge, Node, PathResult


def _check_depth(max_depth: int):
    if max_depth < 0:
        raise InvalidRequestError(f"max_depth must be non-negative, got {max_depth}.")


def _incident(store: GraphStore, node_id: str) -> List[Tuple[str, Edge]]:
    """(neighbour id, edge) pairs for every edge touching the node, in either direction."""
    neighbours = [(edge.target, edge) for edge in store.edges_from(node_id)]
    neighbours.extend((edge.source, edge) for edge in store.edges_to(node_id))
    return neighbours


def connected_nodes(store: GraphStore, node_id: str, max_depth: int) -> List[ConnectedNode]:
    """
    Finds every node within ``max_depth`` hops of ``node_id``, ignoring edge direction.

    Each node appears once, at its minimum depth, together with one shortest
    path from the start node. The start node is included at depth 0.
    Results are ordered by node id.

    Raises:
        NotFoundError: if the start node does not exist.
    """
    _check_depth(max_depth)
    start = store.get_node(node_id)

    found: Dict[str, ConnectedNode] = {
        start.id: ConnectedNode(node=start, depth=0, path=[start.id], relationships=[])
    }
    frontier = deque([start.id])

    while frontier:
        current = found[frontier.popleft()]
        if current.depth >= max_depth:
            continue
        for neighbour_id, edge in _incident(store, current.node.id):
            if neighbour_id in found:
                continue
            neighbour = store.get_node(neighbour_id)
            found[neighbour_id] = ConnectedNode(
                node=neighbour,
                depth=current.depth + 1,
                path=current.path + [neighbour_id],
                relationships=current.relationships + [edge.relationship],
            )
            frontier.append(neighbour_id)

    return [found[key] for key in sorted(found)]


def shortest_path(store: GraphStore, start_id: str, end_id: str, max_depth: int) -> PathResult:
    """
    Finds the minimum-weight directed path from ``start_id`` to ``end_id``
    using at most ``max_depth`` edges and never revisiting a node.

    Ties on total weight go to the path with fewer hops, then to the path
    discovered first (edges are expanded in creation order).

    Raises:
        NotFoundError: if the start node does not exist or no path fits in ``max_depth``.
    """
    _check_depth(max_depth)
    if not store.has_node(start_id):
        raise NotFoundError(f"Node not found: {start_id}")

    counter = itertools.count()
    # (total_weight, hops, discovery order, node id, path, relationships)
    heap = [(0.0, 0, next(counter), start_id, (start_id,), ())]
    expanded: Dict[str, List[Tuple[float, int]]] = {}

    while heap:
        weight, hops, _, node_id, path, relationships = heapq.heappop(heap)
        if node_id == end_id:
            return PathResult(path=list(path), total_weight=weight, relationships=list(relationships))
        if hops >= max_depth:
            continue
        if any(w <= weight and h <= hops for w, h in expanded.get(node_id, [])):
            continue
        expanded.setdefault(node_id, []).append((weight, hops))

        for edge in store.edges_from(node_id):
            if edge.target in path:
                continue
            heapq.heappush(heap, (
                weight + edge.weight,
                hops + 1,
                next(counter),
                edge.target,
                path + (edge.target,),
                relationships + (edge.relationship,),
            ))

    raise NotFoundError(f"No path from {start_id} to {end_id} within {max_depth} hops")


def format_path(labels: Dict[str, str], path: List[str], relationships: List[str]) -> str:
    """Renders a path for citations, e.g. ``NASA -> [operates] -> ISS``."""
    parts = [labels.get(path[0], path[0])]
    for relationship, node_id in zip(relationships, path[1:]):
        parts.append(f"[{relationship}]")
        parts.append(labels.get(node_id, node_id))
    return " -> ".join(parts)


def label_map(nodes: List[Node]) -> Dict[str, str]:
    return {node.id: node.label for node in nodes}
