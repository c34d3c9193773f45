# /core/retriever.py
"""
The fixed operation set offered to the driving agent.

Each operation has an arguments model, a provenance source tag and a flag
telling whether it mutates the graph. Which operations a request may use is
decided by its ``Mode`` through the ``CAPABILITIES`` table.
"""

from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Literal, NamedTuple, Optional, Type

from pydantic import BaseModel, Field

from core.config import settings
from core.database import GraphStore, node_embedding_text
from core.document_store import DocumentStore
from core.embeddings import EmbeddingService
from core.exceptions import NotFoundError, ReferenceIntegrityError
from core.logger import get_logger
from core.models import Node, Properties, SearchScope
from core.traversal import connected_nodes, format_path, label_map
from core.vector_index import VectorIndex

logger = get_logger(__name__)


class Mode(str, Enum):
    VECTOR = "vector"
    GRAPH = "graph"
    HYBRID = "hybrid"


# --- Operation arguments ---

class SearchDocumentsArgs(BaseModel):
    query: str = Field(min_length=1, description="The search query.")
    threshold: float = Field(default_factory=lambda: settings.CHUNK_MATCH_THRESHOLD)
    limit: int = Field(default_factory=lambda: settings.MATCH_COUNT, gt=0)

class SearchNodesArgs(BaseModel):
    query: str = Field(min_length=1, description="The search query.")
    threshold: float = Field(default_factory=lambda: settings.NODE_MATCH_THRESHOLD)
    limit: int = Field(default_factory=lambda: settings.MATCH_COUNT, gt=0)

class TraverseGraphArgs(BaseModel):
    node_label: str = Field(min_length=1, description="Label of the starting node.")
    max_depth: int = Field(default_factory=lambda: settings.TRAVERSAL_DEPTH, ge=0,
                           le=settings.MAX_TRAVERSAL_DEPTH)

class CreateNodeArgs(BaseModel):
    label: str = Field(min_length=1, description="Node label.")
    type: Optional[str] = Field(None, description="Node type (concept, person, technology, etc).")
    properties: Properties = Field(default_factory=dict)

class CreateEdgeArgs(BaseModel):
    source_label: str = Field(min_length=1, description="Source node label.")
    target_label: str = Field(min_length=1, description="Target node label.")
    relationship: str = Field(min_length=1, description="Relationship type.")
    weight: float = Field(1.0, ge=0.0)

class UpdateGraphArgs(BaseModel):
    operation: Literal["add", "refresh"] = Field("refresh", description="Type of update operation.")
    node_id: Optional[str] = Field(None, description="Node ID for focused updates.")


class OperationDefinition(NamedTuple):
    name: str
    description: str
    args_model: Type[BaseModel]
    source: str
    mutating: bool


OPERATIONS: Dict[str, OperationDefinition] = {
    definition.name: definition for definition in [
        OperationDefinition("search_documents", "Search for relevant document chunks using semantic similarity.",
                      SearchDocumentsArgs, "vector_index", False),
        OperationDefinition("traverse_graph", "Traverse the knowledge graph starting from a node.",
                      TraverseGraphArgs, "traversal_engine", False),
        OperationDefinition("create_node", "Create a new node in the knowledge graph.",
                      CreateNodeArgs, "graph_store", True),
        OperationDefinition("create_edge", "Create a relationship between two nodes.",
                      CreateEdgeArgs, "graph_store", True),
        OperationDefinition("update_graph", "Refresh the graph visualization with current nodes and edges.",
                      UpdateGraphArgs, "graph_store", False),
        OperationDefinition("search_nodes", "Search for nodes using semantic similarity.",
                      SearchNodesArgs, "vector_index", False),
    ]
}

_VECTOR_OPS = frozenset({"search_documents"})
_GRAPH_OPS = frozenset({"traverse_graph", "create_node", "create_edge", "update_graph"})

CAPABILITIES: Dict[Mode, FrozenSet[str]] = {
    Mode.VECTOR: _VECTOR_OPS,
    Mode.GRAPH: _GRAPH_OPS,
    Mode.HYBRID: _VECTOR_OPS | _GRAPH_OPS | {"search_nodes"},
}

MUTATING_OPERATIONS = frozenset(name for name, definition in OPERATIONS.items() if definition.mutating)
# Operations that count as "searched the existing data" before a mutation is allowed.
READ_OPERATIONS = frozenset({"search_documents", "traverse_graph", "search_nodes"})


def describe_operations(mode: Mode) -> str:
    """Human-readable catalogue of the operations offered in ``mode``, used in planner prompts."""
    lines = []
    for name in sorted(CAPABILITIES[mode]):
        definition = OPERATIONS[name]
        fields = ", ".join(
            f"{field}{'' if info.is_required() else '?'}"
            for field, info in definition.args_model.model_fields.items()
        )
        lines.append(f"- {name}({fields}): {definition.description}")
    return "\n".join(lines)


class OperationOutput(NamedTuple):
    outputs: Any
    degraded: bool = False


class RetrievalOperations:
    """Handlers for every operation in ``OPERATIONS``, bound to the injected stores."""

    def __init__(self, graph_store: GraphStore, document_store: DocumentStore,
                 vector_index: VectorIndex, embedder: EmbeddingService):
        self.graph_store = graph_store
        self.document_store = document_store
        self.vector_index = vector_index
        self.embedder = embedder
        self._handlers: Dict[str, Callable[[Any], OperationOutput]] = {
            "search_documents": self.search_documents,
            "traverse_graph": self.traverse_graph,
            "create_node": self.create_node,
            "create_edge": self.create_edge,
            "update_graph": self.update_graph,
            "search_nodes": self.search_nodes,
        }

    def run(self, operation: str, arguments: BaseModel) -> OperationOutput:
        return self._handlers[operation](arguments)

    def search_documents(self, args: SearchDocumentsArgs) -> OperationOutput:
        embedding = self.embedder.embed(args.query)
        hits = self.vector_index.similarity_search(
            embedding.vector, SearchScope.CHUNKS, args.threshold, args.limit
        )
        titles: Dict[str, Optional[str]] = {}
        results = []
        for hit in hits:
            chunk = hit.entity
            if chunk.document_id not in titles:
                try:
                    titles[chunk.document_id] = self.document_store.get_document(chunk.document_id).title
                except NotFoundError:
                    titles[chunk.document_id] = None
            results.append({
                "chunk_id": chunk.id,
                "document_id": chunk.document_id,
                "document_title": titles[chunk.document_id] or "Unknown Document",
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "excerpt": _excerpt(chunk.content),
                "similarity": hit.similarity,
            })
        return OperationOutput(results, embedding.degraded)

    def search_nodes(self, args: SearchNodesArgs) -> OperationOutput:
        embedding = self.embedder.embed(args.query)
        hits = self.vector_index.similarity_search(
            embedding.vector, SearchScope.NODES, args.threshold, args.limit
        )
        results = [
            {
                "id": hit.entity.id,
                "label": hit.entity.label,
                "type": hit.entity.type,
                "properties": hit.entity.properties,
                "similarity": hit.similarity,
            }
            for hit in hits
        ]
        return OperationOutput(results, embedding.degraded)

    def traverse_graph(self, args: TraverseGraphArgs) -> OperationOutput:
        start = self.graph_store.find_node_by_label(args.node_label)
        connected = connected_nodes(self.graph_store, start.id, args.max_depth)
        labels = label_map([c.node for c in connected])
        logger.info("Graph traversal", extra={"start": start.id, "max_depth": args.max_depth,
                                              "found": len(connected)})
        return OperationOutput({
            "start_node": _node_summary(start),
            "connected_nodes": [
                {
                    **_node_summary(c.node),
                    "depth": c.depth,
                    "path": c.path,
                    "relationships": c.relationships,
                    "path_text": format_path(labels, c.path, c.relationships),
                }
                for c in connected
            ],
        })

    def create_node(self, args: CreateNodeArgs) -> OperationOutput:
        # Embed first so a failing embedding never leaves a half-initialised node behind.
        draft = Node(label=args.label, type=args.type, properties=args.properties)
        embedding = self.embedder.embed(node_embedding_text(draft))
        self.vector_index.check_dimensions(embedding.vector)
        node = self.graph_store.create_node(args.label, args.type, args.properties,
                                            embedding=embedding.vector)
        return OperationOutput(_node_summary(node), embedding.degraded)

    def create_edge(self, args: CreateEdgeArgs) -> OperationOutput:
        missing = []
        endpoints = {}
        for role, label in (("source", args.source_label), ("target", args.target_label)):
            try:
                endpoints[role] = self.graph_store.find_node_by_label(label)
            except NotFoundError:
                missing.append(label)
        if missing:
            raise ReferenceIntegrityError(f"Node(s) not found: {', '.join(missing)}")

        edge = self.graph_store.create_edge(
            endpoints["source"].id, endpoints["target"].id, args.relationship, weight=args.weight
        )
        return OperationOutput({
            "id": edge.id,
            "source": edge.source,
            "target": edge.target,
            "relationship": edge.relationship,
            "weight": edge.weight,
            "path_text": f"{endpoints['source'].label} -> [{edge.relationship}] -> {endpoints['target'].label}",
        })

    def update_graph(self, args: UpdateGraphArgs) -> OperationOutput:
        if args.operation == "add":
            return OperationOutput({"operation": "add", "message": "Graph updated"})

        if args.node_id:
            neighbourhood = connected_nodes(self.graph_store, args.node_id, 1)
            nodes = [c.node for c in neighbourhood]
            snapshot = self.graph_store.snapshot_of(nodes)
        else:
            snapshot = self.graph_store.snapshot(limit=settings.SNAPSHOT_NODE_LIMIT)
        return OperationOutput({"operation": "refresh", **snapshot.model_dump()})


def _excerpt(content: str) -> str:
    if len(content) <= settings.EXCERPT_CHARS:
        return content
    return content[:settings.EXCERPT_CHARS] + "..."


def _node_summary(node) -> Dict[str, Any]:
    return {"id": node.id, "label": node.label, "type": node.type, "properties": node.properties}
