from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """
    Centralized application settings. Pydantic's BaseSettings will automatically
    load these from environment variables or a .env file.
    """
    # --- LLM and Embedding Models ---
    GENERATION_MODEL: str = Field("gemini-2.5-flash", description="The model used to synthesize the final answer.")
    FAST_MODEL: str = Field("gemini-2.5-flash", description="The model that plans which operations to run.")
    EMBEDDING_MODEL: str = Field("models/embedding-001", description="The model used for creating text embeddings.")
    GOOGLE_API_KEY: str = Field("", description="API key for the Gemini models.")

    # --- Storage ---
    STORE_BACKEND: Literal["memory", "neo4j"] = Field("memory", description="Which backend holds the graph and documents.")
    NEO4J_URI: str = Field("bolt://localhost:7687", description="Bolt URI of the Neo4j server.")
    NEO4J_USERNAME: str = Field("neo4j", description="Neo4j user.")
    NEO4J_PASSWORD: str = Field("", description="Neo4j password.")
    NEO4J_DATABASE: str = Field("neo4j", description="Neo4j database name.")
    STORE_TIMEOUT_SECONDS: float = Field(5.0, description="Timeout applied to every store call.")

    # --- Embeddings ---
    EMBEDDING_DIMENSIONS: int = Field(768, description="Dimensions of the text embeddings (Gemini is 768).")
    EMBEDDING_MAX_CHARS: int = Field(8000, description="Input text is truncated to this many characters before embedding.")
    EMBEDDING_TIMEOUT_SECONDS: float = Field(10.0, description="Timeout for a single embedding call.")

    # --- Retrieval Parameters ---
    STEP_BUDGET: int = Field(5, description="Maximum number of operations executed per request.")
    CHUNK_MATCH_THRESHOLD: float = Field(0.5, description="Default similarity threshold for document chunk search.")
    NODE_MATCH_THRESHOLD: float = Field(0.7, description="Default similarity threshold for node search.")
    MATCH_COUNT: int = Field(10, description="Default number of similarity matches returned.")
    TRAVERSAL_DEPTH: int = Field(2, description="Default depth for graph traversal.")
    MAX_TRAVERSAL_DEPTH: int = Field(10, description="Upper bound accepted for traversal and path depth.")
    SNAPSHOT_NODE_LIMIT: int = Field(50, description="Maximum number of nodes in a graph snapshot.")
    EXCERPT_CHARS: int = Field(200, description="Length of document excerpts used in citations.")

    # --- Service ---
    LOG_LEVEL: str = Field("INFO", description="Log level for the JSON loggers.")
    CORS_ORIGINS: List[str] = Field(["http://localhost", "http://localhost:3000"], description="Origins allowed by the API.")

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

settings = Settings()
