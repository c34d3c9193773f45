from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_graph_store
from core.config import settings
from core.database import GraphStore
from core.exceptions import InvalidRequestError, NotFoundError, UpstreamUnavailableError
from core.logger import get_logger
from core.models import GraphSnapshot, PathResult
from core.traversal import shortest_path

logger = get_logger(__name__)

router = APIRouter(
    prefix="/graph",
    tags=["Knowledge Graph"]
)


@router.get("", response_model=GraphSnapshot)
def get_graph(store: GraphStore = Depends(get_graph_store)):
    """Returns the oldest nodes (capped for display) and the edges between them."""
    try:
        return store.snapshot(limit=settings.SNAPSHOT_NODE_LIMIT)
    except UpstreamUnavailableError as e:
        logger.error(f"Failed to fetch graph data: {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/path", response_model=PathResult)
def get_shortest_path(
    start: str = Query(..., description="ID of the first node."),
    end: str = Query(..., description="ID of the last node."),
    max_depth: int = Query(settings.MAX_TRAVERSAL_DEPTH, ge=0, le=settings.MAX_TRAVERSAL_DEPTH),
    store: GraphStore = Depends(get_graph_store),
):
    """Minimum-weight directed path between two nodes."""
    try:
        return shortest_path(store, start, end, max_depth)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
