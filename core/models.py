# /core/models.py

import datetime
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, JsonValue

# Shared Pydantic data structures for the graph, the documents and the
# caller protocol.

Properties = Dict[str, JsonValue]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# --- Graph ---

class Node(BaseModel):
    id: str = Field(default_factory=new_id, description="Opaque unique identifier of the node.")
    label: str = Field(description="Display name of the entity. Not guaranteed to be unique.")
    type: Optional[str] = Field(None, description="Open-ended category (e.g., organization, person, concept).")
    properties: Properties = Field(default_factory=dict)
    embedding: Optional[List[float]] = Field(description="The vector embedding of the node.", default=None)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

class Edge(BaseModel):
    id: str = Field(default_factory=new_id)
    source: str = Field(description="The ID of the source node.")
    target: str = Field(description="The ID of the target node.")
    relationship: str = Field(description="Free-text relationship label (e.g., founded, operates, uses).")
    properties: Properties = Field(default_factory=dict)
    weight: float = Field(1.0, ge=0.0, description="Cost of following this edge in shortest-path search.")
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)

class ConnectedNode(BaseModel):
    node: Node
    depth: int
    path: List[str] = Field(description="Node ids from the start node to this node.")
    relationships: List[str] = Field(default_factory=list, description="relationships[i] links path[i] and path[i + 1].")

class PathResult(BaseModel):
    path: List[str]
    total_weight: float
    relationships: List[str] = Field(default_factory=list)


# --- Documents ---

class Document(BaseModel):
    id: str = Field(default_factory=new_id)
    title: Optional[str] = None
    content: str
    metadata: Properties = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utcnow)

class Chunk(BaseModel):
    id: str = Field(default_factory=new_id)
    document_id: str
    chunk_index: int = Field(ge=0, description="Position of the chunk within its document.")
    content: str
    embedding: Optional[List[float]] = None
    metadata: Properties = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utcnow)


# --- Vector search ---

class SearchScope(str, Enum):
    NODES = "nodes"
    CHUNKS = "chunks"

class SimilarityHit(BaseModel):
    entity: Union[Node, Chunk]
    similarity: float


# --- Display snapshot ---

class SnapshotNode(BaseModel):
    id: str
    label: str
    type: str
    description: Optional[str] = None

class SnapshotEdge(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    label: str

class GraphSnapshot(BaseModel):
    nodes: List[SnapshotNode]
    edges: List[SnapshotEdge]


# --- Caller protocol ---

class ChatMessage(BaseModel):
    role: str
    content: str

class ChatRequest(BaseModel):
    # Both fields are optional so that validate_request, not the parser, decides
    # what an invalid request is. The chat routes take the raw JSON body for the
    # same reason.
    messages: Optional[List[ChatMessage]] = None
    mode: Optional[str] = None

class PlannedStep(BaseModel):
    """A single operation the driving agent wants to run."""
    operation: str = Field(description="Name of one of the offered operations.")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Arguments for the operation.")

class StepPlan(BaseModel):
    """An ordered list of operations to execute for the current request."""
    steps: List[PlannedStep] = Field(default_factory=list)

class ProvenanceEntry(BaseModel):
    step: int
    operation: str
    source: str = Field(description="Sub-system that produced the outputs.")
    inputs: Dict[str, Any]
    outputs: Any
    degraded: bool = Field(False, description="True when a fallback (e.g. placeholder embedding) was used.")

class FailedStep(BaseModel):
    step: int
    operation: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    error_kind: str
    message: str

class RequestStatus(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    EXECUTING = "executing"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"

class ChatResponse(BaseModel):
    answer: str
    mode: str
    status: RequestStatus
    provenance: List[ProvenanceEntry] = Field(default_factory=list)
    failed_steps: List[FailedStep] = Field(default_factory=list)
    partial: bool = False
    truncated_steps: int = 0
