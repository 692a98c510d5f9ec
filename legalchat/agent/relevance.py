"""
Tool relevance: ask the model, per tool, whether the tool is needed for the query.

Tools are judged independently and strictly one after another; the result keeps
registration order because it drives status messages and execution order.
"""

import logging
from collections.abc import Sequence

from legalchat.agent.llm import LanguageModel
from legalchat.agent.prompts import ANALYZE_TOOL_RELEVANCE, RELEVANCE_MARKER
from legalchat.agent.tools import Tool
from legalchat.schemas.chat import Message

logger = logging.getLogger(__name__)


def last_assistant_response(messages: Sequence[Message]) -> str:
    """Content of the latest assistant message, skipping system messages."""
    for m in reversed(messages):
        if m.role == "system":
            continue
        if m.role == "assistant":
            return m.content
    return ""


def parse_relevance(response: str) -> bool:
    """True only when the first RELEVANT: line says YES."""
    for line in (response or "").split("\n"):
        if line.startswith(RELEVANCE_MARKER):
            return "YES" in line.strip()
    return False


class ToolRelevanceClassifier:
    def __init__(self, llm: LanguageModel) -> None:
        self.llm = llm

    def is_relevant(self, query: str, tool: Tool, context: Sequence[Message]) -> bool:
        prompt = ANALYZE_TOOL_RELEVANCE.format(
            tool_description=tool.description,
            previous_response=last_assistant_response(context),
            query=query,
        )
        response = "".join(chunk.text for chunk in self.llm.run([Message(role="user", content=prompt)]))
        relevant = parse_relevance(response)
        logger.info("[relevance:is_relevant] tool=%s relevant=%s llm_raw=%r", tool.name, relevant, response[:200])
        return relevant

    def analyze_query(self, query: str, tools: Sequence[Tool], context: Sequence[Message]) -> list[str]:
        relevant = [tool.name for tool in tools if self.is_relevant(query, tool, context)]
        logger.info("[relevance:analyze_query] OUT tools=%d relevant=%s", len(tools), relevant)
        return relevant
