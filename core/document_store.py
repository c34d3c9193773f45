# /core/document_store.py

import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from core.exceptions import DuplicateError, InvalidRequestError, NotFoundError, ReferenceIntegrityError
from core.logger import get_logger
from core.models import Chunk, Document, Properties

logger = get_logger(__name__)


class DocumentStore(ABC):
    """Source documents and their ordered, embedded chunks."""

    @abstractmethod
    def add_document(self, title: Optional[str], content: str, metadata: Properties = None) -> Document:
        pass

    @abstractmethod
    def get_document(self, document_id: str) -> Document:
        pass

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        """Deletes the document and its chunks. Returns the number of chunks removed."""

    @abstractmethod
    def add_chunk(self, document_id: str, chunk_index: int, content: str,
                  embedding: Optional[List[float]] = None, metadata: Properties = None) -> Chunk:
        pass

    @abstractmethod
    def get_chunks(self, document_id: str) -> List[Chunk]:
        """Chunks of one document in source order."""

    @abstractmethod
    def list_chunks(self) -> List[Chunk]:
        pass

    def close(self):
        pass


def split_paragraphs(text: str, min_chars: int = 50) -> List[str]:
    """Splits text on blank lines, dropping paragraphs of ``min_chars`` characters or fewer."""
    paragraphs = re.split(r"\n\s*\n", text)
    return [p.strip() for p in paragraphs if len(p.strip()) > min_chars]


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._documents: Dict[str, Document] = {}
        self._chunks: Dict[str, Dict[int, Chunk]] = {}

    def add_document(self, title, content, metadata=None):
        if not content:
            raise InvalidRequestError("Document content must not be empty.")
        document = Document(title=title, content=content, metadata=metadata or {})
        with self._lock:
            self._documents[document.id] = document
            self._chunks[document.id] = {}
        logger.info("Document added", extra={"document_id": document.id, "title": title})
        return document.model_copy(deep=True)

    def get_document(self, document_id):
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise NotFoundError(f"Document not found: {document_id}")
            return document.model_copy(deep=True)

    def delete_document(self, document_id):
        with self._lock:
            if self._documents.pop(document_id, None) is None:
                raise NotFoundError(f"Document not found: {document_id}")
            removed = self._chunks.pop(document_id, {})
        return len(removed)

    def add_chunk(self, document_id, chunk_index, content, embedding=None, metadata=None):
        chunk = Chunk(
            document_id=document_id,
            chunk_index=chunk_index,
            content=content,
            embedding=embedding,
            metadata=metadata or {},
        )
        with self._lock:
            chunks = self._chunks.get(document_id)
            if chunks is None:
                raise ReferenceIntegrityError(f"Document does not exist: {document_id}")
            if chunk_index in chunks:
                raise DuplicateError(
                    f"Chunk {chunk_index} of document {document_id} already exists."
                )
            chunks[chunk_index] = chunk
        return chunk.model_copy(deep=True)

    def get_chunks(self, document_id):
        with self._lock:
            chunks = self._chunks.get(document_id)
            if chunks is None:
                raise NotFoundError(f"Document not found: {document_id}")
            return [chunks[i].model_copy(deep=True) for i in sorted(chunks)]

    def list_chunks(self):
        with self._lock:
            return [
                chunks[i].model_copy(deep=True)
                for chunks in self._chunks.values()
                for i in sorted(chunks)
            ]
