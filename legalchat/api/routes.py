"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends

from legalchat.agent.tools import AGENT_TOOLS
from legalchat.api.handlers import (
    get_identity,
    handle_chat_complete,
    handle_chat_stream,
    handle_usage,
    require_api_secret,
)
from legalchat.core.config import DEFAULT_MODEL
from legalchat.schemas.chat import ChatCompleteResponse, ChatRequest
from legalchat.schemas.quota import Identity, QuotaDecision, UsageStats

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Legal assistant backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


@router.get("/tools", tags=["system"], summary="List tools the user can enable")
def get_tools() -> dict:
    """Registered tools in registration order (the order they are classified and run in)."""
    return {"tools": [{"name": t.name, "description": t.description} for t in AGENT_TOOLS]}


# --- Chat ---

@router.post(
    "/chat",
    tags=["chat"],
    summary="Run one turn and stream progress (SSE)",
    description=(
        "Checks the quota, then streams the turn as Server-Sent Events. "
        "Events: notice, status, content, artifacts, error. 429 with the quota decision when blocked."
    ),
    responses={429: {"model": QuotaDecision}},
    dependencies=[Depends(require_api_secret)],
)
def post_chat(body: ChatRequest, identity: Identity | None = Depends(get_identity)):
    logger.info(
        "[api:post_chat] IN  messages=%d model=%s plugins=%s",
        len(body.messages),
        body.model_name,
        body.enabled_plugin_ids,
    )
    return handle_chat_stream(body, identity)


@router.post(
    "/chat/complete",
    response_model=ChatCompleteResponse,
    tags=["chat"],
    summary="Run one turn and return the full answer",
    description="Blocking variant of /chat. 429 when the quota blocks, 503 when the model is unavailable.",
    responses={429: {"model": QuotaDecision}},
    dependencies=[Depends(require_api_secret)],
)
def post_chat_complete(body: ChatRequest, identity: Identity | None = Depends(get_identity)):
    logger.info("[api:post_chat_complete] IN  messages=%d model=%s", len(body.messages), body.model_name)
    return handle_chat_complete(body, identity)


# --- Quota ---

@router.get(
    "/quota/usage",
    response_model=UsageStats,
    tags=["quota"],
    summary="Today's usage and limits for the current user",
)
def get_quota_usage(model_name: str = DEFAULT_MODEL, identity: Identity | None = Depends(get_identity)) -> UsageStats:
    return handle_usage(identity, model_name)
