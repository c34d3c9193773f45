from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Protocol, TypedDict, Union

from langgraph.graph import StateGraph, END
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser
from pydantic import ValidationError

from core.config import settings
from core.exceptions import (
    InvalidRequestError,
    MutationPolicyError,
    OperationNotOfferedError,
    error_kind,
)
from core.logger import get_logger
from core.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    FailedStep,
    PlannedStep,
    ProvenanceEntry,
    RequestStatus,
)
from core.planner import Planner, transcript
from core.retriever import (
    CAPABILITIES,
    MUTATING_OPERATIONS,
    OPERATIONS,
    READ_OPERATIONS,
    Mode,
    RetrievalOperations,
)

logger = get_logger(__name__)


# --- Orchestrator State ---
class OrchestratorState(TypedDict):
    messages: List[ChatMessage]
    mode: Mode
    status: RequestStatus
    plan: List[PlannedStep]
    cursor: int
    read_attempted: bool
    provenance: List[ProvenanceEntry]
    failed_steps: List[FailedStep]
    truncated_steps: int
    answer: str
    # Streamed output for the client
    streaming_thought: str


class StepResult(NamedTuple):
    """Either ``entry`` (success) or ``failure`` is set."""
    entry: Optional[ProvenanceEntry] = None
    failure: Optional[FailedStep] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def validate_request(request: Union[ChatRequest, Dict[str, Any]]) -> ChatRequest:
    """Rejects malformed requests before anything touches the stores."""
    if not isinstance(request, ChatRequest):
        try:
            request = ChatRequest.model_validate(request)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid request format: {e}")
    if not request.messages:
        raise InvalidRequestError("Invalid messages format: at least one message is required.")
    valid_modes = ", ".join(m.value for m in Mode)
    try:
        Mode(request.mode)
    except ValueError:
        raise InvalidRequestError(f"Invalid mode. Must be one of: {valid_modes}")
    return request


def execute_step(operations: RetrievalOperations, mode: Mode, step: int,
                 planned: PlannedStep, read_attempted: bool) -> StepResult:
    """
    Runs one planned operation and converts any error into a FailedStep.

    Nothing raised here ever escapes: a failing step must not abort the
    remaining steps of the request.
    """
    inputs = dict(planned.arguments)
    try:
        if planned.operation not in CAPABILITIES[mode]:
            raise OperationNotOfferedError(
                f"Operation '{planned.operation}' is not available in {mode.value} mode."
            )
        if planned.operation in MUTATING_OPERATIONS and not read_attempted:
            raise MutationPolicyError(
                f"'{planned.operation}' refused: search the existing data before modifying the graph."
            )
        definition = OPERATIONS[planned.operation]
        try:
            arguments = definition.args_model.model_validate(inputs)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid arguments for {planned.operation}: {e}")

        result = operations.run(planned.operation, arguments)
    except Exception as e:
        kind = error_kind(e)
        logger.warning(
            f"Step {step} ({planned.operation}) failed: {e}",
            extra={"step": step, "operation": planned.operation, "error_kind": kind},
            exc_info=kind == "InternalError",
        )
        return StepResult(failure=FailedStep(
            step=step, operation=planned.operation, inputs=inputs, error_kind=kind, message=str(e)
        ))

    logger.info(f"Step {step} ({planned.operation}) succeeded",
                extra={"step": step, "operation": planned.operation, "degraded": result.degraded})
    return StepResult(entry=ProvenanceEntry(
        step=step,
        operation=planned.operation,
        source=definition.source,
        inputs=arguments.model_dump(),
        outputs=result.outputs,
        degraded=result.degraded,
    ))


# --- Responders ---

class Responder(Protocol):
    def __call__(self, messages: List[ChatMessage], mode: Mode, provenance: List[ProvenanceEntry],
                 failed_steps: List[FailedStep], truncated_steps: int) -> str: ...


def compose_answer(messages: List[ChatMessage], mode: Mode, provenance: List[ProvenanceEntry],
                   failed_steps: List[FailedStep], truncated_steps: int) -> str:
    """Deterministic answer that lists every retrieved fact with its citation."""
    sections = [f"Results for: {messages[-1].content}"]

    for entry in provenance:
        if entry.operation == "search_documents":
            lines = [
                f'- {hit["document_title"]} (chunk {hit["chunk_index"]}, similarity {hit["similarity"]:.2f}): '
                f'"{hit["excerpt"]}"'
                for hit in entry.outputs
            ] or ["- No documents found matching your query"]
            sections.append("Document Sources:\n" + "\n".join(lines))
        elif entry.operation == "search_nodes":
            lines = [
                f'- {hit["label"]} ({hit["type"] or "entity"}, similarity {hit["similarity"]:.2f})'
                for hit in entry.outputs
            ] or ["- No matching nodes found"]
            sections.append("Matched Nodes:\n" + "\n".join(lines))
        elif entry.operation == "traverse_graph":
            lines = [f'- {c["path_text"]}' for c in entry.outputs["connected_nodes"] if c["depth"] > 0]
            sections.append("Graph Paths:\n" + "\n".join(lines or ["- No graph connections found"]))
        elif entry.operation == "create_node":
            sections.append(f'Graph Changes:\n- Created node {entry.outputs["label"]}')
        elif entry.operation == "create_edge":
            sections.append(f'Graph Changes:\n- Created relationship {entry.outputs["path_text"]}')
        elif entry.operation == "update_graph":
            nodes = len(entry.outputs.get("nodes", []))
            sections.append(f"Graph View:\n- Refreshed ({nodes} nodes)" if nodes else "Graph View:\n- Update signalled")

    if not provenance:
        sections.append("No result found: no operation produced any data.")
    if any(entry.degraded for entry in provenance):
        sections.append("Note: placeholder embeddings were used because the embedding service "
                        "was unavailable; similarity results may be unreliable.")
    if failed_steps:
        sections.append("Failed Steps:\n" + "\n".join(
            f"- step {f.step} {f.operation}: {f.error_kind}: {f.message}" for f in failed_steps
        ))
    if truncated_steps:
        sections.append(f"Note: the step budget was reached; {truncated_steps} planned step(s) were not executed.")
    return "\n\n".join(sections)


class LLMResponder:
    """Synthesizes the answer with Gemini from the cited evidence."""

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI
            self._llm = ChatGoogleGenerativeAI(model=settings.GENERATION_MODEL, temperature=0)
        return self._llm

    def __call__(self, messages, mode, provenance, failed_steps, truncated_steps):
        evidence = compose_answer(messages, mode, provenance, failed_steps, truncated_steps)
        prompt = ChatPromptTemplate.from_template(
            """
            Synthesize a clear and direct answer to the user's last message based ONLY on the evidence below.

            Conversation:
            {conversation}

            Evidence from the executed steps:
            ---
            {evidence}
            ---

            Rules:
            - Keep the "Document Sources", "Graph Paths" and "Matched Nodes" sections with their scores.
            - If the evidence contains no results, say so explicitly.
            - If the evidence mentions placeholder embeddings or failed steps, say so.
            """
        )
        chain = prompt | self.llm | StrOutputParser()
        try:
            return chain.invoke({"conversation": transcript(messages), "evidence": evidence})
        except Exception as e:
            logger.warning(f"Answer synthesis failed, returning the evidence as is: {e}")
            return evidence


# --- Orchestrator ---

class RetrievalOrchestrator:
    """
    Runs a caller request through plan -> execute_step (loop) -> assemble -> respond.

    The stores are reached only through ``operations``, which is injected so
    tests can use in-memory backends.
    """

    def __init__(self, operations: RetrievalOperations, planner: Planner,
                 responder: Responder = compose_answer, step_budget: int = None):
        self.operations = operations
        self.planner = planner
        self.responder = responder
        self.step_budget = step_budget or settings.STEP_BUDGET
        self.graph = self._build_graph()

    # --- Graph nodes ---

    def plan(self, state: OrchestratorState):
        logger.info("--- PLANNER: Creating execution plan ---", extra={"mode": state["mode"].value})
        failed_steps = list(state["failed_steps"])
        try:
            steps = self.planner(state["messages"], state["mode"]).steps
        except Exception as e:
            logger.error(f"Planner failed: {e}", extra={"error_kind": error_kind(e)})
            failed_steps.append(FailedStep(step=0, operation="plan", error_kind=error_kind(e), message=str(e)))
            steps = []

        truncated = max(0, len(steps) - self.step_budget)
        if truncated:
            logger.warning("Step budget exceeded, dropping planned steps",
                           extra={"budget": self.step_budget, "dropped": truncated})
        steps = steps[:self.step_budget]

        plan_str = "\n".join(f"{i + 1}. {s.operation}" for i, s in enumerate(steps)) or "(no steps)"
        return {
            "status": RequestStatus.EXECUTING,
            "plan": steps,
            "cursor": 0,
            "failed_steps": failed_steps,
            "truncated_steps": truncated,
            "streaming_thought": f"I have formulated a plan:\n{plan_str}",
        }

    def execute(self, state: OrchestratorState):
        index = state["cursor"]
        planned = state["plan"][index]
        read_attempted = state["read_attempted"]
        result = execute_step(self.operations, state["mode"], index + 1, planned, read_attempted)

        provenance = list(state["provenance"])
        failed_steps = list(state["failed_steps"])
        if result.ok:
            provenance.append(result.entry)
            thought = f"Step {index + 1} complete: {planned.operation}."
        else:
            failed_steps.append(result.failure)
            thought = f"Step {index + 1} failed: {result.failure.error_kind}."
        # Refused operations do not count as an attempted read.
        if planned.operation in READ_OPERATIONS and planned.operation in CAPABILITIES[state["mode"]]:
            read_attempted = True

        return {
            "cursor": index + 1,
            "read_attempted": read_attempted,
            "provenance": provenance,
            "failed_steps": failed_steps,
            "streaming_thought": thought,
        }

    def assemble(self, state: OrchestratorState):
        return {
            "status": RequestStatus.ASSEMBLING,
            "provenance": sorted(state["provenance"], key=lambda entry: entry.step),
            "streaming_thought": "All steps are complete. Synthesizing the final answer...",
        }

    def respond(self, state: OrchestratorState):
        answer = self.responder(
            state["messages"], state["mode"], state["provenance"],
            state["failed_steps"], state["truncated_steps"],
        )
        return {"answer": answer, "status": RequestStatus.DONE, "streaming_thought": "Done."}

    @staticmethod
    def should_continue(state: OrchestratorState):
        if state["cursor"] < len(state["plan"]):
            return "continue"
        return "end"

    def _build_graph(self):
        workflow = StateGraph(OrchestratorState)
        workflow.add_node("planner", self.plan)
        workflow.add_node("execute_step", self.execute)
        workflow.add_node("assemble", self.assemble)
        workflow.add_node("responder", self.respond)

        workflow.set_entry_point("planner")
        workflow.add_conditional_edges(
            "planner", self.should_continue, {"continue": "execute_step", "end": "assemble"}
        )
        workflow.add_conditional_edges(
            "execute_step", self.should_continue, {"continue": "execute_step", "end": "assemble"}
        )
        workflow.add_edge("assemble", "responder")
        workflow.add_edge("responder", END)
        return workflow.compile()

    # --- Entry points ---

    def _initial_state(self, request) -> OrchestratorState:
        logger.info("Request received", extra={"status": RequestStatus.RECEIVED.value})
        try:
            request = validate_request(request)
        except InvalidRequestError as e:
            logger.warning(f"Request rejected: {e}", extra={"status": RequestStatus.FAILED.value})
            raise
        mode = Mode(request.mode)
        logger.info("Request validated", extra={"status": RequestStatus.VALIDATED.value, "mode": mode.value})
        return {
            "messages": request.messages,
            "mode": mode,
            "status": RequestStatus.VALIDATED,
            "plan": [],
            "cursor": 0,
            "read_attempted": False,
            "provenance": [],
            "failed_steps": [],
            "truncated_steps": 0,
            "answer": "",
            "streaming_thought": "",
        }

    def _config(self):
        # planner + assemble + responder + one superstep per executed operation
        return {"recursion_limit": self.step_budget + 10}

    def run(self, request: Union[ChatRequest, Dict[str, Any]]) -> ChatResponse:
        """
        Executes a request end to end.

        Raises:
            InvalidRequestError: if the request has no messages or an unknown mode.
        """
        final_state = self.graph.invoke(self._initial_state(request), config=self._config())
        return to_response(final_state)

    def stream(self, request: Union[ChatRequest, Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
        """Yields ``thought`` events while the graph runs, then one ``answer`` event."""
        state = self._initial_state(request)
        for event in self.graph.stream(state, config=self._config(), stream_mode="updates"):
            for update in event.values():
                state.update(update)
                if update.get("streaming_thought"):
                    yield {"type": "thought", "content": update["streaming_thought"]}
        yield {"type": "answer", "content": to_response(state).model_dump(mode="json")}


def to_response(state: OrchestratorState) -> ChatResponse:
    failed_steps = state["failed_steps"]
    logger.info("Request done", extra={
        "status": state["status"].value,
        "mode": state["mode"].value,
        "steps": len(state["provenance"]),
        "failed": len(failed_steps),
    })
    return ChatResponse(
        answer=state["answer"],
        mode=state["mode"].value,
        status=state["status"],
        provenance=state["provenance"],
        failed_steps=failed_steps,
        partial=bool(failed_steps) or state["truncated_steps"] > 0,
        truncated_steps=state["truncated_steps"],
    )
