# /core/embeddings.py

import hashlib
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional

import numpy as np
from langchain_core.embeddings import Embeddings
from pydantic import BaseModel, Field

from core.config import settings
from core.exceptions import ConfigurationError
from core.logger import get_logger

logger = get_logger(__name__)


class EmbeddingResult(BaseModel):
    vector: List[float]
    degraded: bool = Field(False, description="True when the vector is a placeholder, not a real embedding.")
    reason: Optional[str] = None


def fallback_vector(text: str, dimensions: int) -> List[float]:
    """Deterministic placeholder vector seeded from the text, so retries are reproducible."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    return np.random.default_rng(seed).random(dimensions).tolist()


def default_embeddings_model() -> Embeddings:
    from langchain_google_genai import GoogleGenerativeAIEmbeddings
    return GoogleGenerativeAIEmbeddings(model=settings.EMBEDDING_MODEL)


class EmbeddingService:
    """
    Wraps a LangChain embeddings model for the retrieval core.

    ``embed`` never raises for an unreachable or slow model: it substitutes a
    placeholder vector and marks the result as degraded so callers can tell it
    apart from a real embedding. A model that returns the wrong number of
    dimensions is a configuration problem and does raise.
    """
    def __init__(self, embeddings_model: Optional[Embeddings] = None, dimensions: int = None,
                 max_chars: int = None, timeout: float = None):
        self._model = embeddings_model
        self.dimensions = dimensions or settings.EMBEDDING_DIMENSIONS
        self.max_chars = max_chars or settings.EMBEDDING_MAX_CHARS
        self.timeout = timeout or settings.EMBEDDING_TIMEOUT_SECONDS
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="embedding")

    @property
    def model(self) -> Embeddings:
        if self._model is None:
            self._model = default_embeddings_model()
        return self._model

    def embed(self, text: str) -> EmbeddingResult:
        truncated = text[:self.max_chars]
        try:
            future = self._executor.submit(self.model.embed_query, truncated)
            vector = future.result(timeout=self.timeout)
        except FutureTimeout:
            return self._fallback(truncated, f"embedding timed out after {self.timeout}s")
        except Exception as e:
            return self._fallback(truncated, f"embedding failed: {e}")

        if len(vector) != self.dimensions:
            raise ConfigurationError(
                f"Embedding model returned {len(vector)} dimensions, expected {self.dimensions}."
            )
        return EmbeddingResult(vector=list(vector))

    def _fallback(self, text: str, reason: str) -> EmbeddingResult:
        logger.warning("Using placeholder embedding", extra={"reason": reason, "chars": len(text)})
        return EmbeddingResult(vector=fallback_vector(text, self.dimensions), degraded=True, reason=reason)

    def close(self):
        self._executor.shutdown(wait=False)
