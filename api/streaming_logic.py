import json

from fastapi.responses import StreamingResponse

from core.agent_logic import RetrievalOrchestrator
from core.models import ChatRequest


def stream_agent_response_logic(orchestrator: RetrievalOrchestrator, request: ChatRequest):
    """
    Runs the orchestrator and streams back the thought process and final answer.
    """
    for event in orchestrator.stream(request):
        yield f"data: {json.dumps(event)}\n\n"


def stream_agent_response(orchestrator: RetrievalOrchestrator, request: ChatRequest):
    return StreamingResponse(
        stream_agent_response_logic(orchestrator, request),
        media_type="text/event-stream"
    )
