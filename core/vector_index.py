# /core/vector_index.py

from abc import ABC, abstractmethod
from typing import Iterable, List, Sequence, Union

import numpy as np

from core.database import GraphStore
from core.document_store import DocumentStore
from core.exceptions import ConfigurationError, InvalidRequestError
from core.models import Chunk, Node, SearchScope, SimilarityHit


class VectorIndex(ABC):
    """
    Nearest-neighbour search over node and chunk embeddings.

    Similarity is ``1 - cosine distance``. Only hits strictly above
    ``threshold`` are returned, most similar first, at most ``limit`` of them.
    """
    def __init__(self, dimensions: int):
        self.dimensions = dimensions

    def check_dimensions(self, vector: Sequence[float]):
        if len(vector) != self.dimensions:
            raise ConfigurationError(
                f"Embedding has {len(vector)} dimensions, the index expects {self.dimensions}."
            )

    @abstractmethod
    def similarity_search(self, query_embedding: Sequence[float], scope: Union[SearchScope, str],
                          threshold: float, limit: int) -> List[SimilarityHit]:
        pass


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``. Zero vectors score NaN."""
    q = np.asarray(query, dtype=np.float64)
    dots = matrix @ q
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(norms > 0, dots / norms, np.nan)


def rank_hits(query_embedding: Sequence[float], candidates: List[Union[Node, Chunk]],
              threshold: float, limit: int) -> List[SimilarityHit]:
    if not candidates or limit <= 0:
        return []
    matrix = np.asarray([c.embedding for c in candidates], dtype=np.float64)
    scores = cosine_similarities(query_embedding, matrix)
    # Undefined scores sort last; the stable sort keeps creation order among equal scores.
    order = np.argsort(np.where(np.isnan(scores), np.inf, -scores), kind="stable")
    hits = []
    for i in order:
        score = float(scores[i])
        if np.isnan(score) or score <= threshold:
            break
        hits.append(SimilarityHit(entity=candidates[i], similarity=score))
        if len(hits) == limit:
            break
    return hits


class InMemoryVectorIndex(VectorIndex):
    """Exact cosine search with numpy over the embeddings held by the in-memory stores."""
    def __init__(self, graph_store: GraphStore, document_store: DocumentStore, dimensions: int):
        super().__init__(dimensions)
        self.graph_store = graph_store
        self.document_store = document_store

    def _candidates(self, scope: SearchScope) -> Iterable[Union[Node, Chunk]]:
        if scope == SearchScope.NODES:
            return self.graph_store.list_nodes()
        return self.document_store.list_chunks()

    def similarity_search(self, query_embedding, scope, threshold, limit):
        try:
            scope = SearchScope(scope)
        except ValueError:
            raise InvalidRequestError(f"Unknown search scope: {scope}")
        self.check_dimensions(query_embedding)

        candidates = []
        for entity in self._candidates(scope):
            if entity.embedding is None:
                continue
            self.check_dimensions(entity.embedding)
            candidates.append(entity)
        return rank_hits(query_embedding, candidates, threshold, limit)
