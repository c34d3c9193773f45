# /refresh_embeddings.py

import argparse

from dotenv import load_dotenv
load_dotenv()

from api.dependencies import create_backends
from core.embeddings import EmbeddingService
from core.logger import get_logger
from core.maintenance import refresh_node_embeddings

logger = get_logger(__name__)


def main():
    """
    Recomputes the embeddings of the nodes in the configured store,
    e.g. after nodes were loaded without them or the embedding model changed.
    """
    parser = argparse.ArgumentParser(description="Refresh knowledge-graph node embeddings.")
    parser.add_argument("--only-missing", action="store_true", help="Only embed nodes that have no embedding yet.")
    args = parser.parse_args()

    backends = create_backends()
    embedder = EmbeddingService()
    try:
        result = refresh_node_embeddings(backends.graph_store, embedder, only_missing=args.only_missing)
        logger.info(f"Updated {result.updated} node(s), skipped {result.skipped}.")
    finally:
        embedder.close()
        backends.graph_store.close()


if __name__ == '__main__':
    main()
