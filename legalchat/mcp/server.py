"""
Minimal MCP-style tool server: exposes the registered agent tools through a
standardized interface, so external agents can call them with the same
{"question": ...} contract the orchestrator uses.
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from legalchat.agent.executor import execute_tool
from legalchat.agent.tools import AGENT_TOOLS, get_tool

logger = logging.getLogger(__name__)

mcp_router = APIRouter(tags=["mcp"])


class ToolInvokeRequest(BaseModel):
    """Request body for POST /mcp/tools/{name}."""
    question: str = ""


@mcp_router.get("/tools", summary="MCP tool discovery")
def mcp_list_tools() -> dict[str, list[dict[str, Any]]]:
    """Tool schema for discovery / documentation."""
    return {
        "tools": [
            {"name": t.name, "description": t.description, "input_schema": {"question": "string"}}
            for t in AGENT_TOOLS
        ]
    }


@mcp_router.post(
    "/tools/{tool_name}",
    summary="MCP tool: invoke",
    description="Invoke a registered tool. Failures come back as result text, never as HTTP errors.",
)
def mcp_invoke_tool(tool_name: str, body: ToolInvokeRequest) -> dict[str, Any]:
    logger.info("MCP tool called: %s", tool_name)
    tool = get_tool(tool_name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {tool_name}")
    question = (body.question or "").strip()
    if not question:
        return {"result": "", "artifact": None}
    result = execute_tool(tool, question)
    return {"result": result.text, "artifact": result.artifact}
