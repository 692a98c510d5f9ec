"""
LangGraph agent: analyze query → (await tool → run tool)* → final generation.

Orchestration of one turn. The classify/execute part is a compiled StateGraph
streamed step by step, so each node's update becomes progress events as soon as
the node finishes. Answer generation is streamed straight from the language model.

Events (AgentProgress):
  status          - what the agent is doing now
  tool_execution  - one tool finished, with its artifact if it produced one
  response        - a chunk of the answer
"""

import logging
import threading
from collections.abc import Iterator, Sequence
from typing import Any, Literal, TypedDict

from langgraph.graph import END, StateGraph

from legalchat.agent.executor import execute_tool
from legalchat.agent.llm import LanguageModel, LanguageModelClient
from legalchat.agent.prompts import (
    FIRST_IRRELEVANT_USER_QUESTION,
    PROCESS_DATA,
    STATUS_ANALYZING,
    STATUS_DIRECT,
    STATUS_FINAL,
    status_awaiting_tool,
    status_selected_tools,
    tool_execution_done,
)
from legalchat.agent.relevance import ToolRelevanceClassifier
from legalchat.agent.tools import Tool, get_enabled_tools, get_tool
from legalchat.core.config import DIRECT_CONTEXT_MESSAGES
from legalchat.core.errors import EmptyResponseError
from legalchat.schemas.chat import AgentAnswer, AgentProgress, Artifact, GenerationOptions, Message

logger = logging.getLogger(__name__)


class TurnState(TypedDict):
    query: str
    messages: list[Message]
    relevant_tools: list[str]
    cursor: int
    current_tool: str | None
    tool_results: list[dict[str, str]]
    artifacts: list[Artifact]
    last_artifact: Artifact | None


def _route_after_analyze(state: TurnState) -> Literal["await_tool", "__end__"]:
    """No relevant tools ends the graph; generation happens outside it."""
    return "await_tool" if state.get("relevant_tools") else END


def _route_after_await(state: TurnState) -> Literal["run_tool", "__end__"]:
    return "run_tool" if state.get("current_tool") else END


def direct_context(messages: Sequence[Message]) -> list[Message]:
    """
    Last messages of the conversation for direct generation. Only the most recent
    message carrying artifacts keeps them; older artifacts are dropped.
    """
    window = [m.model_copy(deep=True) for m in messages[-DIRECT_CONTEXT_MESSAGES:]]
    latest = None
    for i in range(len(window) - 1, -1, -1):
        if window[i].artifacts:
            latest = i
            break
    for i, m in enumerate(window):
        if i != latest:
            m.artifacts = []
    return window


def format_tool_results(tool_results: Sequence[dict[str, str]]) -> str:
    return "\n".join(f"{r['tool']}: {r['result']}" for r in tool_results)


class AgentOrchestrator:
    """Runs one turn: classify tools, execute the relevant ones, stream the answer."""

    def __init__(self, llm: LanguageModel, tools: Sequence[Tool]) -> None:
        self.llm = llm
        self.tools = list(tools)
        self.classifier = ToolRelevanceClassifier(llm)
        self.graph = self._build_graph()

    # --- graph nodes ---

    def _analyze_query(self, state: TurnState) -> dict[str, Any]:
        relevant = self.classifier.analyze_query(state["query"], self.tools, state["messages"])
        return {"relevant_tools": relevant, "cursor": 0}

    def _await_tool(self, state: TurnState) -> dict[str, Any]:
        """Advance to the next relevant tool that is actually registered."""
        names = state["relevant_tools"]
        cursor = state["cursor"]
        while cursor < len(names):
            if get_tool(names[cursor], self.tools) is not None:
                return {"cursor": cursor, "current_tool": names[cursor]}
            logger.info("[graph:await_tool] skipping unknown tool=%r", names[cursor])
            cursor += 1
        return {"cursor": cursor, "current_tool": None}

    def _run_tool(self, state: TurnState) -> dict[str, Any]:
        name = state["current_tool"]
        tool = get_tool(name, self.tools)
        result = execute_tool(tool, state["query"])
        artifacts = list(state.get("artifacts") or [])
        if result.artifact:
            artifacts.append(result.artifact)
        return {
            "tool_results": [*(state.get("tool_results") or []), {"tool": name, "result": result.text}],
            "artifacts": artifacts,
            "last_artifact": result.artifact,
            "cursor": state["cursor"] + 1,
            "current_tool": None,
        }

    def _build_graph(self):
        graph = StateGraph(TurnState)

        graph.add_node("analyze_query", self._analyze_query)
        graph.add_node("await_tool", self._await_tool)
        graph.add_node("run_tool", self._run_tool)

        graph.set_entry_point("analyze_query")
        graph.add_conditional_edges("analyze_query", _route_after_analyze)
        graph.add_conditional_edges("await_tool", _route_after_await)
        graph.add_edge("run_tool", "await_tool")

        return graph.compile()

    # --- event stream ---

    @staticmethod
    def _progress_for(node: str, update: dict[str, Any]) -> AgentProgress | None:
        if node == "analyze_query":
            relevant = update.get("relevant_tools") or []
            if not relevant:
                return AgentProgress(type="status", content=STATUS_DIRECT)
            return AgentProgress(type="status", content=status_selected_tools(relevant))
        if node == "await_tool" and update.get("current_tool"):
            return AgentProgress(type="status", content=status_awaiting_tool(update["current_tool"]))
        if node == "run_tool":
            artifact = update.get("last_artifact")
            name = update["tool_results"][-1]["tool"]
            return AgentProgress(
                type="tool_execution",
                content=tool_execution_done(name),
                artifacts=[artifact] if artifact else None,
            )
        return None

    def _stream_response(
        self,
        llm_messages: list[Message],
        artifacts: list[Artifact] | None,
        cancel_event: threading.Event | None,
    ) -> Iterator[AgentProgress]:
        chunks = self.llm.run(llm_messages)
        try:
            for chunk in chunks:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("[graph:stream_response] cancelled mid-stream")
                    return
                yield AgentProgress(
                    type="response",
                    content=chunk.text,
                    artifacts=list(artifacts) if artifacts is not None else None,
                )
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()

    def invoke(self, messages: Sequence[Message], cancel_event: threading.Event | None = None) -> Iterator[AgentProgress]:
        """
        Run one turn and yield progress events. messages[0] is the system prompt,
        messages[-1] the current user query. Model errors propagate to the caller.
        """
        if not messages:
            raise ValueError("messages are required")

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        system_message = messages[0]
        user_message = messages[-1]
        logger.info(
            "[graph:invoke] START query=%r history_len=%d tools=%s",
            user_message.content,
            len(messages),
            [t.name for t in self.tools],
        )
        if cancelled():
            return

        yield AgentProgress(type="status", content=STATUS_ANALYZING)

        state: dict[str, Any] = {
            "query": user_message.content,
            "messages": list(messages),
            "relevant_tools": [],
            "cursor": 0,
            "current_tool": None,
            "tool_results": [],
            "artifacts": [],
            "last_artifact": None,
        }
        steps = self.graph.stream(
            dict(state),
            config={"recursion_limit": 2 * len(self.tools) + 5},
            stream_mode="updates",
        )
        try:
            for step in steps:
                if cancelled():
                    logger.info("[graph:invoke] cancelled; discarding step=%s", list(step))
                    return
                for node, update in step.items():
                    state.update(update or {})
                    event = self._progress_for(node, update or {})
                    if event is None:
                        continue
                    yield event
                    if cancelled():
                        logger.info("[graph:invoke] cancelled after node=%s", node)
                        return
        finally:
            steps.close()

        if not state["relevant_tools"]:
            if len(messages) < 3:
                logger.info("[graph:invoke] END first question without relevant tools; no model call")
                yield AgentProgress(type="response", content=FIRST_IRRELEVANT_USER_QUESTION)
                return
            yield from self._stream_response(direct_context(messages), None, cancel_event)
            logger.info("[graph:invoke] END direct generation")
            return

        formatted_results = format_tool_results(state["tool_results"])
        yield AgentProgress(type="status", content=STATUS_FINAL)
        if cancelled():
            return

        final_messages = [
            Message(role="system", content=system_message.content),
            Message(
                role="user",
                content=PROCESS_DATA.format(question=user_message.content),
                data=[{"type": "tool_results", "content": formatted_results}],
            ),
        ]
        yield from self._stream_response(final_messages, state["artifacts"], cancel_event)
        logger.info(
            "[graph:invoke] END tools_used=%s artifacts=%d",
            [r["tool"] for r in state["tool_results"]],
            len(state["artifacts"]),
        )

    def call(self, input: str | Sequence[Message], cancel_event: threading.Event | None = None) -> AgentAnswer:
        """Drain invoke(): concatenate response chunks, keep the last reported artifacts."""
        if isinstance(input, str):
            messages = [Message(role="user", content=input)]
        else:
            messages = list(input)

        content = ""
        artifacts: list[Artifact] = []
        for progress in self.invoke(messages, cancel_event):
            if progress.type != "response":
                continue
            content += progress.content
            if progress.artifacts is not None:
                artifacts = progress.artifacts

        if not content:
            raise EmptyResponseError("Nie wygenerowano odpowiedzi")
        return AgentAnswer(content=content, artifacts=artifacts)


def build_orchestrator(
    model_name: str,
    enabled_tool_names: Sequence[str],
    options: GenerationOptions | None = None,
) -> AgentOrchestrator:
    """Orchestrator for one request: the selected model and the user's enabled tools."""
    llm = LanguageModelClient(model_name, options)
    return AgentOrchestrator(llm, get_enabled_tools(enabled_tool_names))
