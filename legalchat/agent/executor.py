"""
Tool execution: invoke one tool, split its output into text and artifact,
and keep tool failures from failing the turn.
"""

import json
import logging
from dataclasses import dataclass

from legalchat.agent.tools import Tool
from legalchat.schemas.chat import Artifact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    text: str
    artifact: Artifact | None = None


def parse_tool_output(raw: str) -> ToolResult:
    """
    Interpret raw tool output. Only a JSON object whose "artifact" is a non-empty
    object is treated as structured; everything else is returned as plain text.
    A "result" that is not a non-empty string falls back to the raw text.
    """
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return ToolResult(text=raw)
    if not isinstance(parsed, dict):
        return ToolResult(text=raw)
    artifact = parsed.get("artifact")
    if not isinstance(artifact, dict) or not artifact:
        return ToolResult(text=raw)
    result = parsed.get("result")
    text = result if isinstance(result, str) and result else raw
    return ToolResult(text=text, artifact=artifact)


def execute_tool(tool: Tool, query: str) -> ToolResult:
    """Invoke the tool with the user's question. Never raises."""
    logger.info("[executor:execute_tool] IN  tool=%s query=%r", tool.name, query)
    try:
        raw = tool.invoke({"question": query})
    except Exception:
        logger.exception("[executor:execute_tool] tool=%s failed", tool.name)
        return ToolResult(text=f"Error: Failed to execute tool {tool.name}")
    result = parse_tool_output(str(raw))
    logger.info(
        "[executor:execute_tool] OUT tool=%s result_len=%d artifact=%s",
        tool.name,
        len(result.text),
        result.artifact is not None,
    )
    return result
