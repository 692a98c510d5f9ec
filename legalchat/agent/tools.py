"""
Agent tools: the uniform tool contract, the registry, and the built-in tools.

Tools: sejm_stats (Polish legal acts via sejm-stats vector search, returns an
artifact), web_search (DuckDuckGo via ddgs, plain text).

Every tool is invoked as tool.invoke({"question": str}) and returns text. A tool
that wants to attach an artifact returns JSON text: {"result": str, "artifact": {...}}.
"""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from legalchat.core.config import SEJM_STATS_BASE_URL, SEJM_STATS_RESULTS, TOOLS_HTTP_TIMEOUT, WEB_SEARCH_MAX_RESULTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tool:
    """Named capability. The description is what the relevance classifier judges."""

    name: str
    description: str
    func: Callable[[str], str]

    def invoke(self, payload: dict[str, Any]) -> str:
        question = str((payload or {}).get("question") or "")
        return self.func(question)


# --- sejm_stats ---

def _normalize_act(act: dict[str, Any]) -> dict[str, Any]:
    """Make the announcement date ISO-8601 so the model sees one date format."""
    out = dict(act)
    raw_date = out.get("announcementDate")
    if raw_date:
        try:
            out["announcementDate"] = datetime.fromisoformat(str(raw_date)).isoformat()
        except ValueError:
            pass
    return out


def search_legal_acts(question: str) -> list[dict[str, Any]]:
    """Vector search over Polish legal acts. Raises on HTTP errors."""
    q = (question or "").strip()
    logger.info("[tools:search_legal_acts] IN  query=%r", q)
    if not q:
        return []
    with httpx.Client(timeout=TOOLS_HTTP_TIMEOUT) as client:
        response = client.get(
            f"{SEJM_STATS_BASE_URL}/vector-search",
            params={"q": q, "n": SEJM_STATS_RESULTS},
        )
    if response.status_code != 200:
        logger.warning("[tools:search_legal_acts] HTTP %s: %s", response.status_code, response.text[:200])
    response.raise_for_status()
    data = response.json()
    acts = [_normalize_act(a) for a in data if isinstance(a, dict)] if isinstance(data, list) else []
    logger.info("[tools:search_legal_acts] OUT acts=%d", len(acts))
    return acts


def _sejm_stats_impl(question: str) -> str:
    acts = search_legal_acts(question)
    if not acts:
        return "No legal acts found."
    lines = []
    for i, act in enumerate(acts, 1):
        lines.append(
            f"{i}. {act.get('title', '')} ({act.get('ELI', '')})\n"
            f"Status: {act.get('status', '')}; published: {act.get('announcementDate', '')}\n"
            f"{act.get('summary', '')}\n"
            f"URL: {act.get('url', '')}"
        )
    artifact = {
        "type": "legal_acts",
        "acts": [
            {
                "eli": act.get("ELI"),
                "title": act.get("title"),
                "url": act.get("url"),
                "status": act.get("status"),
                "announcement_date": act.get("announcementDate"),
            }
            for act in acts
        ],
    }
    return json.dumps({"result": "\n\n".join(lines), "artifact": artifact}, ensure_ascii=False)


# --- web_search ---

def _web_search_impl(question: str) -> str:
    """Run web search using ddgs."""
    from ddgs import DDGS

    q = (question or "").strip()
    if not q:
        return "Error: empty query"
    with DDGS() as ddgs:
        results = list(ddgs.text(q, max_results=WEB_SEARCH_MAX_RESULTS))
    if not results:
        return "No results found."
    lines = []
    for i, r in enumerate(results[:WEB_SEARCH_MAX_RESULTS], 1):
        title = (r.get("title") or "").strip()
        body = (r.get("body") or "").strip()
        href = (r.get("href") or "").strip()
        lines.append(f"{i}. {title}\n{body}\nURL: {href}")
    return "\n\n".join(lines)


# Registration order is the order tools are classified, announced and executed in.
AGENT_TOOLS: list[Tool] = [
    Tool(
        name="sejm_stats",
        description=(
            "Searches Polish legal acts (ustawy, rozporządzenia) published in Dziennik Ustaw and Monitor Polski. "
            "Use when the question concerns Polish law, penalties, rights, obligations, deadlines or a specific act."
        ),
        func=_sejm_stats_impl,
    ),
    Tool(
        name="web_search",
        description=(
            "Searches the web for current or external information: recent events, news, "
            "institutions, or facts that are not part of legal acts."
        ),
        func=_web_search_impl,
    ),
]


def get_tool(name: str, tools: Iterable[Tool] = AGENT_TOOLS) -> Tool | None:
    for tool in tools:
        if tool.name == name:
            return tool
    return None


def get_enabled_tools(names: Iterable[str], tools: Iterable[Tool] = AGENT_TOOLS) -> list[Tool]:
    """Filter the registry by enabled names, keeping registration order."""
    enabled = set(names or [])
    return [t for t in tools if t.name in enabled]
