# /core/maintenance.py
"""
Administrative helpers that fill in embeddings for stored data.

Placeholder vectors are never persisted here: when the embedding model is
unavailable the entity keeps its current embedding (or none) so it simply
stays out of similarity search until the next run.
"""

from typing import NamedTuple, Optional

from core.database import GraphStore, node_embedding_text
from core.document_store import DocumentStore, split_paragraphs
from core.embeddings import EmbeddingService
from core.logger import get_logger
from core.models import Document, Properties

logger = get_logger(__name__)


class EmbeddingRefresh(NamedTuple):
    updated: int
    skipped: int


def refresh_node_embeddings(graph_store: GraphStore, embedder: EmbeddingService,
                            only_missing: bool = False) -> EmbeddingRefresh:
    """Re-embeds every node from its text representation."""
    updated = skipped = 0
    for node in graph_store.list_nodes():
        if only_missing and node.embedding is not None:
            continue
        result = embedder.embed(node_embedding_text(node))
        if result.degraded:
            logger.warning("Node embedding not refreshed", extra={"node_id": node.id, "reason": result.reason})
            skipped += 1
            continue
        graph_store.update_node(node.id, embedding=result.vector)
        updated += 1

    logger.info("Node embeddings refreshed", extra={"updated": updated, "skipped": skipped})
    return EmbeddingRefresh(updated, skipped)


def add_document_with_chunks(document_store: DocumentStore, embedder: EmbeddingService, title: Optional[str],
                             content: str, metadata: Properties = None,
                             min_chars: int = 50) -> Document:
    """
    Stores a document and one embedded chunk per paragraph, in source order.

    Chunks whose embedding fell back to a placeholder are stored without an
    embedding.
    """
    document = document_store.add_document(title, content, metadata)
    for index, paragraph in enumerate(split_paragraphs(content, min_chars)):
        result = embedder.embed(paragraph)
        document_store.add_chunk(
            document.id, index, paragraph, embedding=None if result.degraded else result.vector
        )
    logger.info("Document stored", extra={"document_id": document.id, "title": title})
    return document
