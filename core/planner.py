from typing import List, Protocol

from langchain_core.prompts import ChatPromptTemplate

from core.config import settings
from core.models import ChatMessage, StepPlan
from core.retriever import Mode, describe_operations


class Planner(Protocol):
    """The driving agent: decides which operations to run for a request."""
    def __call__(self, messages: List[ChatMessage], mode: Mode) -> StepPlan: ...


MODE_GUIDANCE = {
    Mode.VECTOR: """
    You search through document chunks using semantic similarity.
    - ALWAYS plan a search_documents step before answering.
    """,
    Mode.GRAPH: """
    You navigate a knowledge graph and can create nodes and relationships when explicitly asked.
    1. ALWAYS plan traverse_graph FIRST, before creating anything new.
    2. ONLY plan create_node / create_edge when the user explicitly asks to add something to the graph.
       NEVER create nodes just because you are answering a question.
    3. Create a node before any relationship that uses it.
    4. Plan update_graph ONLY after changes to the graph.
    """,
    Mode.HYBRID: """
    You combine semantic search with graph traversal.
    1. ALWAYS search existing data FIRST (documents, nodes and the graph).
    2. ONLY plan create_node / create_edge when the user explicitly asks to add something.
    3. Create a node before any relationship that uses it.
    4. Plan update_graph ONLY after changes to the graph.
    """,
}

SYSTEM_TEMPLATE = """
You are the planner of a hybrid retrieval system. Turn the conversation into an ordered
list of operations to execute. Use ONLY the operations listed below and at most {budget} steps.

{guidance}

Available operations (arguments marked with ? are optional):
{operations}
"""


def transcript(messages: List[ChatMessage]) -> str:
    return "\n".join(f"{m.role}: {m.content}" for m in messages)


class LLMPlanner:
    """Plans with a Gemini model constrained to the StepPlan schema."""

    def __init__(self, llm=None, budget: int = None):
        self._llm = llm
        self.budget = budget or settings.STEP_BUDGET

    @property
    def llm(self):
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI
            self._llm = ChatGoogleGenerativeAI(model=settings.FAST_MODEL, temperature=0)
        return self._llm

    def __call__(self, messages: List[ChatMessage], mode: Mode) -> StepPlan:
        prompt = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_TEMPLATE),
            ("human", "Conversation:\n{conversation}"),
        ])
        chain = prompt | self.llm.with_structured_output(StepPlan)
        return chain.invoke({
            "budget": self.budget,
            "guidance": MODE_GUIDANCE[mode],
            "operations": describe_operations(mode),
            "conversation": transcript(messages),
        })
