from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from api.dependencies import get_orchestrator
from api.streaming_logic import stream_agent_response
from core.agent_logic import RetrievalOrchestrator, validate_request
from core.exceptions import InvalidRequestError
from core.logger import get_logger
from core.models import ChatResponse

logger = get_logger(__name__)

router = APIRouter(
    prefix="/chat",
    tags=["Chat"]
)

# The body is taken as raw JSON so that malformed requests are rejected by
# validate_request with a 400, like an unknown mode, instead of a 422.
EXAMPLE_REQUEST = {
    "messages": [{"role": "user", "content": "What does NASA operate?"}],
    "mode": "hybrid",
}


@router.post("", response_model=ChatResponse)
def chat(payload: Dict[str, Any] = Body(..., examples=[EXAMPLE_REQUEST]),
         orchestrator: RetrievalOrchestrator = Depends(get_orchestrator)):
    """
    Answers the conversation using the operations offered by the requested mode.
    Step failures are reported in ``failed_steps``; only malformed requests fail.
    """
    try:
        return orchestrator.run(payload)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/stream")
def chat_stream(payload: Dict[str, Any] = Body(..., examples=[EXAMPLE_REQUEST]),
                orchestrator: RetrievalOrchestrator = Depends(get_orchestrator)):
    """Streams the orchestrator's progress and final answer as server-sent events."""
    try:
        request = validate_request(payload)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Received streaming request", extra={"mode": request.mode})
    return stream_agent_response(orchestrator, request)
