from functools import lru_cache
from typing import NamedTuple

from core.agent_logic import LLMResponder, RetrievalOrchestrator
from core.config import settings
from core.database import GraphStore, InMemoryGraphStore
from core.document_store import DocumentStore, InMemoryDocumentStore
from core.embeddings import EmbeddingService
from core.logger import get_logger
from core.planner import LLMPlanner
from core.retriever import RetrievalOperations
from core.vector_index import InMemoryVectorIndex, VectorIndex

logger = get_logger(__name__)


class Backends(NamedTuple):
    graph_store: GraphStore
    document_store: DocumentStore
    vector_index: VectorIndex


def create_backends() -> Backends:
    """Builds the stores selected by ``settings.STORE_BACKEND``."""
    if settings.STORE_BACKEND == "neo4j":
        from core.neo4j_database import (
            Neo4jConnection,
            Neo4jDocumentStore,
            Neo4jGraphStore,
            Neo4jVectorIndex,
        )
        connection = Neo4jConnection()
        connection.ensure_schema(settings.EMBEDDING_DIMENSIONS)
        backends = Backends(
            Neo4jGraphStore(connection),
            Neo4jDocumentStore(connection),
            Neo4jVectorIndex(connection, settings.EMBEDDING_DIMENSIONS),
        )
    else:
        graph_store = InMemoryGraphStore()
        document_store = InMemoryDocumentStore()
        backends = Backends(
            graph_store,
            document_store,
            InMemoryVectorIndex(graph_store, document_store, settings.EMBEDDING_DIMENSIONS),
        )
    logger.info("Backends ready", extra={"backend": settings.STORE_BACKEND})
    return backends


@lru_cache
def get_backends() -> Backends:
    return create_backends()


def get_graph_store() -> GraphStore:
    return get_backends().graph_store


@lru_cache
def get_orchestrator() -> RetrievalOrchestrator:
    backends = get_backends()
    operations = RetrievalOperations(
        backends.graph_store, backends.document_store, backends.vector_index, EmbeddingService()
    )
    return RetrievalOrchestrator(operations, planner=LLMPlanner(), responder=LLMResponder())
