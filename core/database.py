# /core/database.py

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from core.exceptions import (
    DuplicateError,
    InvalidRequestError,
    NotFoundError,
    ReferenceIntegrityError,
)
from core.logger import get_logger
from core.models import Edge, GraphSnapshot, Node, Properties, SnapshotEdge, SnapshotNode, utcnow

logger = get_logger(__name__)


class GraphStore(ABC):
    """
    An abstract base class defining the standard interface for the property graph.

    The store owns node and edge identity and enforces referential integrity
    and the (source, target, relationship) uniqueness of edges.
    """
    @abstractmethod
    def create_node(self, label: str, type: Optional[str] = None, properties: Properties = None,
                    embedding: Optional[List[float]] = None) -> Node:
        pass

    @abstractmethod
    def get_node(self, node_id: str) -> Node:
        pass

    @abstractmethod
    def find_node_by_label(self, label: str) -> Node:
        """Exact label match. When labels collide the oldest node wins."""

    @abstractmethod
    def update_node(self, node_id: str, properties: Properties = None,
                    embedding: Optional[List[float]] = None) -> Node:
        pass

    @abstractmethod
    def delete_node(self, node_id: str) -> int:
        """Deletes the node and all its incident edges. Returns the number of edges removed."""

    @abstractmethod
    def create_edge(self, source_id: str, target_id: str, relationship: str,
                    properties: Properties = None, weight: float = 1.0) -> Edge:
        pass

    @abstractmethod
    def edges_from(self, node_id: str) -> List[Edge]:
        pass

    @abstractmethod
    def edges_to(self, node_id: str) -> List[Edge]:
        pass

    @abstractmethod
    def list_nodes(self, limit: Optional[int] = None) -> List[Node]:
        pass

    @abstractmethod
    def list_edges(self, node_ids: Optional[Iterable[str]] = None) -> List[Edge]:
        """All edges, or only those with both endpoints in ``node_ids``."""

    def has_node(self, node_id: str) -> bool:
        try:
            self.get_node(node_id)
        except NotFoundError:
            return False
        return True

    def snapshot(self, limit: Optional[int] = None) -> GraphSnapshot:
        if limit is None:
            return to_snapshot(self.list_nodes(), self.list_edges())
        return self.snapshot_of(self.list_nodes(limit=limit))

    def snapshot_of(self, nodes: List[Node]) -> GraphSnapshot:
        """Snapshot of the given nodes and the edges running between them."""
        return to_snapshot(nodes, self.list_edges(node_ids=[n.id for n in nodes]))

    def close(self):
        pass


def to_snapshot(nodes: List[Node], edges: List[Edge]) -> GraphSnapshot:
    """Transforms nodes and edges into the display-ready shape."""
    return GraphSnapshot(
        nodes=[
            SnapshotNode(
                id=node.id,
                label=node.label,
                type=node.type or "entity",
                description=_description(node),
            )
            for node in nodes
        ],
        edges=[
            SnapshotEdge(id=edge.id, source=edge.source, target=edge.target, label=edge.relationship)
            for edge in edges
        ],
    )


def _description(node: Node) -> Optional[str]:
    description = node.properties.get("description")
    return description if isinstance(description, str) else None


def node_embedding_text(node: Node) -> str:
    """Text representation of a node used to compute its embedding."""
    extras = ", ".join(
        f"{key}: {value}" for key, value in node.properties.items() if key != "description"
    )
    parts = [node.label, node.type, _description(node), extras]
    return " - ".join(part for part in parts if part)


def validate_edge_arguments(relationship: str, weight: float):
    if not relationship or not relationship.strip():
        raise InvalidRequestError("Relationship label must not be empty.")
    if weight < 0:
        raise InvalidRequestError(f"Edge weight must be non-negative, got {weight}.")


class InMemoryGraphStore(GraphStore):
    """Concrete implementation of the GraphStore kept entirely in process memory.

    Writes are serialized with a single re-entrant lock, so two concurrent
    attempts to create the same edge produce exactly one success.
    """
    def __init__(self):
        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._by_label: Dict[str, List[str]] = {}
        self._out: Dict[str, List[str]] = {}
        self._in: Dict[str, List[str]] = {}
        self._triples: Dict[Tuple[str, str, str], str] = {}

    def create_node(self, label, type=None, properties=None, embedding=None):
        node = Node(label=label, type=type, properties=properties or {}, embedding=embedding)
        with self._lock:
            self._nodes[node.id] = node
            self._by_label.setdefault(label, []).append(node.id)
            self._out[node.id] = []
            self._in[node.id] = []
        logger.info("Node created", extra={"node_id": node.id, "label": label, "type": type})
        return node.model_copy(deep=True)

    def get_node(self, node_id):
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError(f"Node not found: {node_id}")
            return node.model_copy(deep=True)

    def find_node_by_label(self, label):
        with self._lock:
            ids = self._by_label.get(label)
            if not ids:
                raise NotFoundError(f"No node labelled '{label}'")
            return self._nodes[ids[0]].model_copy(deep=True)

    def update_node(self, node_id, properties=None, embedding=None):
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError(f"Node not found: {node_id}")
            updates = {"updated_at": utcnow()}
            if properties:
                updates["properties"] = {**node.properties, **properties}
            if embedding is not None:
                updates["embedding"] = list(embedding)
            node = node.model_copy(update=updates)
            self._nodes[node_id] = node
            return node.model_copy(deep=True)

    def delete_node(self, node_id):
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                raise NotFoundError(f"Node not found: {node_id}")
            incident = set(self._out.pop(node_id, [])) | set(self._in.pop(node_id, []))
            for edge_id in incident:
                edge = self._edges.pop(edge_id)
                self._triples.pop((edge.source, edge.target, edge.relationship), None)
                if edge.target in self._in:
                    self._in[edge.target].remove(edge_id)
                if edge.source in self._out:
                    self._out[edge.source].remove(edge_id)
            self._by_label[node.label].remove(node_id)
            if not self._by_label[node.label]:
                del self._by_label[node.label]
        logger.info("Node deleted", extra={"node_id": node_id, "edges_removed": len(incident)})
        return len(incident)

    def create_edge(self, source_id, target_id, relationship, properties=None, weight=1.0):
        validate_edge_arguments(relationship, weight)
        with self._lock:
            missing = [node_id for node_id in (source_id, target_id) if node_id not in self._nodes]
            if missing:
                raise ReferenceIntegrityError(f"Edge endpoint(s) do not exist: {', '.join(missing)}")
            triple = (source_id, target_id, relationship)
            if triple in self._triples:
                raise DuplicateError(
                    f"Edge '{relationship}' from {source_id} to {target_id} already exists."
                )
            edge = Edge(
                source=source_id,
                target=target_id,
                relationship=relationship,
                properties=properties or {},
                weight=weight,
            )
            self._edges[edge.id] = edge
            self._triples[triple] = edge.id
            self._out[source_id].append(edge.id)
            self._in[target_id].append(edge.id)
        logger.info("Edge created", extra={"edge_id": edge.id, "source": source_id,
                                           "target": target_id, "relationship": relationship})
        return edge.model_copy(deep=True)

    def edges_from(self, node_id):
        with self._lock:
            return [self._edges[edge_id].model_copy(deep=True) for edge_id in self._out.get(node_id, [])]

    def edges_to(self, node_id):
        with self._lock:
            return [self._edges[edge_id].model_copy(deep=True) for edge_id in self._in.get(node_id, [])]

    def list_nodes(self, limit=None):
        with self._lock:
            nodes = list(self._nodes.values())
        if limit is not None:
            nodes = nodes[:limit]
        return [node.model_copy(deep=True) for node in nodes]

    def list_edges(self, node_ids=None):
        with self._lock:
            edges = list(self._edges.values())
        if node_ids is not None:
            wanted = set(node_ids)
            edges = [e for e in edges if e.source in wanted and e.target in wanted]
        return [edge.model_copy(deep=True) for edge in edges]
