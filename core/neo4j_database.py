import json
from contextlib import contextmanager
from typing import Any, Dict, List

from neo4j import GraphDatabase, unit_of_work
from neo4j.exceptions import ClientError, ConstraintError, ServiceUnavailable, SessionExpired, TransientError

from core.config import settings
from core.database import GraphStore, validate_edge_arguments
from core.document_store import DocumentStore
from core.exceptions import (
    ConfigurationError,
    DuplicateError,
    InvalidRequestError,
    NotFoundError,
    ReferenceIntegrityError,
    UpstreamUnavailableError,
)
from core.logger import get_logger
from core.models import Chunk, Document, Edge, Node, SearchScope, SimilarityHit, new_id, utcnow
from core.vector_index import VectorIndex

logger = get_logger(__name__)

NODE_INDEX = "kg_node_embeddings"
CHUNK_INDEX = "document_chunk_embeddings"


class Neo4jConnection:
    """
    A Neo4j driver plus the database name and the timeout applied to every
    transaction. Shared by the graph store, document store and vector index.
    """
    def __init__(self, uri: str = None, user: str = None, password: str = None,
                 database: str = None, timeout: float = None):
        uri = uri or settings.NEO4J_URI
        user = user or settings.NEO4J_USERNAME
        password = password or settings.NEO4J_PASSWORD
        if not all([uri, user, password]):
            raise ConfigurationError("Neo4j credentials not found in settings or .env file.")
        self.database = database or settings.NEO4J_DATABASE
        self.timeout = timeout or settings.STORE_TIMEOUT_SECONDS
        self._driver = GraphDatabase.driver(uri, auth=(user, password))

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except (ServiceUnavailable, SessionExpired) as e:
            raise UpstreamUnavailableError(f"Neo4j is unavailable: {e}") from e
        except TransientError as e:
            raise UpstreamUnavailableError(f"Neo4j transaction could not complete: {e}") from e
        except ClientError as e:
            if e.code and "TransactionTimedOut" in e.code:
                raise UpstreamUnavailableError(f"Neo4j call timed out after {self.timeout}s") from e
            raise

    def read(self, work, **params):
        with self._translate_errors(), self._driver.session(database=self.database) as session:
            return session.execute_read(unit_of_work(timeout=self.timeout)(work), **params)

    def write(self, work, **params):
        with self._translate_errors(), self._driver.session(database=self.database) as session:
            return session.execute_write(unit_of_work(timeout=self.timeout)(work), **params)

    def ensure_schema(self, dimensions: int):
        """Creates the constraints, lookup indexes and vector indexes the stores rely on."""
        statements = [
            "CREATE CONSTRAINT kg_node_id IF NOT EXISTS FOR (n:KGNode) REQUIRE n.id IS UNIQUE",
            "CREATE INDEX kg_node_label IF NOT EXISTS FOR (n:KGNode) ON (n.label)",
            "CREATE CONSTRAINT document_id IF NOT EXISTS FOR (d:Document) REQUIRE d.id IS UNIQUE",
            "CREATE CONSTRAINT chunk_ordinal IF NOT EXISTS "
            "FOR (c:Chunk) REQUIRE (c.document_id, c.chunk_index) IS UNIQUE",
        ]
        for index_name, label in ((NODE_INDEX, "KGNode"), (CHUNK_INDEX, "Chunk")):
            statements.append(f"""
            CREATE VECTOR INDEX `{index_name}` IF NOT EXISTS
            FOR (n:{label}) ON (n.embedding)
            OPTIONS {{ indexConfig: {{
                `vector.dimensions`: {dimensions},
                `vector.similarity_function`: 'cosine'
            }}}}
            """)
        with self._translate_errors(), self._driver.session(database=self.database) as session:
            for statement in statements:
                session.run(statement)
        logger.info("Neo4j schema ensured", extra={"dimensions": dimensions})

    def close(self):
        self._driver.close()


# --- Record conversion ---

def _dump(properties: Dict[str, Any]) -> str:
    return json.dumps(properties or {})


def _node(record_node) -> Node:
    data = dict(record_node)
    data["properties"] = json.loads(data.get("properties") or "{}")
    return Node.model_validate(data)


def _edge(relationship, source: str, target: str) -> Edge:
    data = dict(relationship)
    data["properties"] = json.loads(data.get("properties") or "{}")
    return Edge.model_validate({**data, "source": source, "target": target})


def _document(record_node) -> Document:
    data = dict(record_node)
    data["metadata"] = json.loads(data.get("metadata") or "{}")
    return Document.model_validate(data)


def _chunk(record_node) -> Chunk:
    data = dict(record_node)
    data["metadata"] = json.loads(data.get("metadata") or "{}")
    return Chunk.model_validate(data)


EDGE_RETURN = "RETURN r, a.id AS source, b.id AS target ORDER BY r.created_at, r.id"


class Neo4jGraphStore(GraphStore):
    """GraphStore on Neo4j: nodes are :KGNode, edges are :RELATES with a free-text ``relationship``."""

    def __init__(self, connection: Neo4jConnection):
        self.connection = connection

    def create_node(self, label, type=None, properties=None, embedding=None):
        now = utcnow().isoformat()
        params = {
            "id": new_id(), "label": label, "type": type, "properties": _dump(properties),
            "embedding": embedding, "now": now,
        }

        def work(tx, **p):
            record = tx.run("""
            CREATE (n:KGNode {id: $id, label: $label, type: $type, properties: $properties,
                              embedding: $embedding, created_at: $now, updated_at: $now})
            RETURN n
            """, p).single()
            return _node(record["n"])

        node = self.connection.write(work, **params)
        logger.info("Node created", extra={"node_id": node.id, "label": label, "type": type})
        return node

    def get_node(self, node_id):
        def work(tx, node_id):
            return tx.run("MATCH (n:KGNode {id: $node_id}) RETURN n", node_id=node_id).single()

        record = self.connection.read(work, node_id=node_id)
        if record is None:
            raise NotFoundError(f"Node not found: {node_id}")
        return _node(record["n"])

    def find_node_by_label(self, label):
        def work(tx, label):
            return tx.run("""
            MATCH (n:KGNode {label: $label})
            RETURN n ORDER BY n.created_at, n.id LIMIT 1
            """, label=label).single()

        record = self.connection.read(work, label=label)
        if record is None:
            raise NotFoundError(f"No node labelled '{label}'")
        return _node(record["n"])

    def update_node(self, node_id, properties=None, embedding=None):
        def work(tx, node_id, properties, embedding, now):
            record = tx.run("MATCH (n:KGNode {id: $node_id}) RETURN n", node_id=node_id).single()
            if record is None:
                return None
            node = _node(record["n"])
            merged = {**node.properties, **(properties or {})}
            record = tx.run("""
            MATCH (n:KGNode {id: $node_id})
            SET n.properties = $properties, n.updated_at = $now,
                n.embedding = coalesce($embedding, n.embedding)
            RETURN n
            """, node_id=node_id, properties=_dump(merged), embedding=embedding, now=now).single()
            return _node(record["n"])

        node = self.connection.write(work, node_id=node_id, properties=properties,
                                     embedding=embedding, now=utcnow().isoformat())
        if node is None:
            raise NotFoundError(f"Node not found: {node_id}")
        return node

    def delete_node(self, node_id):
        def work(tx, node_id):
            return tx.run("""
            MATCH (n:KGNode {id: $node_id})
            OPTIONAL MATCH (n)-[r:RELATES]-()
            WITH n, count(DISTINCT r) AS edges
            DETACH DELETE n
            RETURN edges
            """, node_id=node_id).single()

        record = self.connection.write(work, node_id=node_id)
        if record is None:
            raise NotFoundError(f"Node not found: {node_id}")
        logger.info("Node deleted", extra={"node_id": node_id, "edges_removed": record["edges"]})
        return record["edges"]

    def create_edge(self, source_id, target_id, relationship, properties=None, weight=1.0):
        validate_edge_arguments(relationship, weight)
        now = utcnow().isoformat()

        def work(tx, **p):
            # Writing to both endpoints takes their write locks, so the duplicate
            # check below cannot race with another transaction.
            locked = tx.run("""
            MATCH (n:KGNode) WHERE n.id IN [$source, $target]
            WITH n ORDER BY n.id
            SET n._lock = true REMOVE n._lock
            RETURN collect(n.id) AS ids
            """, p).single()["ids"]
            missing = [i for i in (p["source"], p["target"]) if i not in locked]
            if missing:
                raise ReferenceIntegrityError(f"Edge endpoint(s) do not exist: {', '.join(missing)}")
            existing = tx.run("""
            MATCH (:KGNode {id: $source})-[r:RELATES {relationship: $relationship}]->(:KGNode {id: $target})
            RETURN r.id AS id LIMIT 1
            """, p).single()
            if existing is not None:
                raise DuplicateError(
                    f"Edge '{p['relationship']}' from {p['source']} to {p['target']} already exists."
                )
            record = tx.run("""
            MATCH (a:KGNode {id: $source}), (b:KGNode {id: $target})
            CREATE (a)-[r:RELATES {id: $id, relationship: $relationship, properties: $properties,
                                   weight: $weight, created_at: $now, updated_at: $now}]->(b)
            RETURN r, a.id AS source, b.id AS target
            """, p).single()
            return _edge(record["r"], record["source"], record["target"])

        edge = self.connection.write(
            work, id=new_id(), source=source_id, target=target_id, relationship=relationship,
            properties=_dump(properties), weight=float(weight), now=now,
        )
        logger.info("Edge created", extra={"edge_id": edge.id, "source": source_id,
                                           "target": target_id, "relationship": relationship})
        return edge

    def _edges(self, pattern: str, **params) -> List[Edge]:
        def work(tx, **p):
            return [_edge(r["r"], r["source"], r["target"]) for r in tx.run(f"{pattern} {EDGE_RETURN}", p)]

        return self.connection.read(work, **params)

    def edges_from(self, node_id):
        return self._edges("MATCH (a:KGNode {id: $node_id})-[r:RELATES]->(b:KGNode)", node_id=node_id)

    def edges_to(self, node_id):
        return self._edges("MATCH (a:KGNode)-[r:RELATES]->(b:KGNode {id: $node_id})", node_id=node_id)

    def list_nodes(self, limit=None):
        def work(tx, limit):
            query = "MATCH (n:KGNode) RETURN n ORDER BY n.created_at, n.id"
            if limit is not None:
                query += " LIMIT $limit"
            return [_node(r["n"]) for r in tx.run(query, limit=limit)]

        return self.connection.read(work, limit=limit)

    def list_edges(self, node_ids=None):
        return self._edges(
            "MATCH (a:KGNode)-[r:RELATES]->(b:KGNode) "
            "WHERE $ids IS NULL OR (a.id IN $ids AND b.id IN $ids)",
            ids=list(node_ids) if node_ids is not None else None,
        )

    def close(self):
        self.connection.close()


class Neo4jDocumentStore(DocumentStore):
    """Documents as :Document nodes linked to their :Chunk nodes by HAS_CHUNK."""

    def __init__(self, connection: Neo4jConnection):
        self.connection = connection

    def add_document(self, title, content, metadata=None):
        if not content:
            raise InvalidRequestError("Document content must not be empty.")

        def work(tx, **p):
            record = tx.run("""
            CREATE (d:Document {id: $id, title: $title, content: $content, metadata: $metadata,
                                created_at: $now})
            RETURN d
            """, p).single()
            return _document(record["d"])

        document = self.connection.write(work, id=new_id(), title=title, content=content,
                                         metadata=_dump(metadata), now=utcnow().isoformat())
        logger.info("Document added", extra={"document_id": document.id, "title": title})
        return document

    def get_document(self, document_id):
        def work(tx, document_id):
            return tx.run("MATCH (d:Document {id: $document_id}) RETURN d", document_id=document_id).single()

        record = self.connection.read(work, document_id=document_id)
        if record is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return _document(record["d"])

    def delete_document(self, document_id):
        def work(tx, document_id):
            return tx.run("""
            MATCH (d:Document {id: $document_id})
            OPTIONAL MATCH (d)-[:HAS_CHUNK]->(c:Chunk)
            WITH d, collect(c) AS chunks
            FOREACH (c IN chunks | DETACH DELETE c)
            DETACH DELETE d
            RETURN size(chunks) AS removed
            """, document_id=document_id).single()

        record = self.connection.write(work, document_id=document_id)
        if record is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return record["removed"]

    def add_chunk(self, document_id, chunk_index, content, embedding=None, metadata=None):
        chunk = Chunk(document_id=document_id, chunk_index=chunk_index, content=content,
                      embedding=embedding, metadata=metadata or {})

        def work(tx, **p):
            record = tx.run("""
            MATCH (d:Document {id: $document_id})
            CREATE (d)-[:HAS_CHUNK]->(c:Chunk {id: $id, document_id: $document_id,
                chunk_index: $chunk_index, content: $content, embedding: $embedding,
                metadata: $metadata, created_at: $now})
            RETURN c
            """, p).single()
            return None if record is None else _chunk(record["c"])

        try:
            created = self.connection.write(
                work, id=chunk.id, document_id=document_id, chunk_index=chunk_index, content=content,
                embedding=embedding, metadata=_dump(metadata), now=chunk.created_at.isoformat(),
            )
        except ConstraintError as e:
            raise DuplicateError(f"Chunk {chunk_index} of document {document_id} already exists.") from e
        if created is None:
            raise ReferenceIntegrityError(f"Document does not exist: {document_id}")
        return created

    def get_chunks(self, document_id):
        self.get_document(document_id)

        def work(tx, document_id):
            return [_chunk(r["c"]) for r in tx.run("""
            MATCH (:Document {id: $document_id})-[:HAS_CHUNK]->(c:Chunk)
            RETURN c ORDER BY c.chunk_index
            """, document_id=document_id)]

        return self.connection.read(work, document_id=document_id)

    def list_chunks(self):
        def work(tx):
            return [_chunk(r["c"]) for r in tx.run(
                "MATCH (c:Chunk) RETURN c ORDER BY c.created_at, c.document_id, c.chunk_index"
            )]

        return self.connection.read(work)

    def close(self):
        self.connection.close()


def neo4j_score_to_cosine(score: float) -> float:
    """Neo4j reports cosine similarity normalized to [0, 1] as (1 + cos) / 2."""
    return 2.0 * score - 1.0


class Neo4jVectorIndex(VectorIndex):
    """Similarity search through Neo4j's native vector indexes."""

    def __init__(self, connection: Neo4jConnection, dimensions: int):
        super().__init__(dimensions)
        self.connection = connection

    def similarity_search(self, query_embedding, scope, threshold, limit):
        try:
            scope = SearchScope(scope)
        except ValueError:
            raise InvalidRequestError(f"Unknown search scope: {scope}")
        self.check_dimensions(query_embedding)
        if limit <= 0:
            return []
        index_name = NODE_INDEX if scope == SearchScope.NODES else CHUNK_INDEX
        convert = _node if scope == SearchScope.NODES else _chunk

        def work(tx, **p):
            return [(convert(r["node"]), neo4j_score_to_cosine(r["score"])) for r in tx.run("""
            CALL db.index.vector.queryNodes($index_name, $k, $embedding)
            YIELD node, score
            RETURN node, score ORDER BY score DESC
            """, p)]

        results = self.connection.read(work, index_name=index_name, k=limit,
                                       embedding=list(query_embedding))
        return [
            SimilarityHit(entity=entity, similarity=similarity)
            for entity, similarity in results
            if similarity > threshold
        ][:limit]
