"""
API handlers: read request data, run the quota gate, drive the agent, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. SSE framing and exception-to-HTTP mapping
live here so the agent and services stay free of FastAPI/HTTP types.
"""

import json
import logging
import threading
from collections.abc import Iterator
from typing import Any

from fastapi import Header, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse

from legalchat.agent.graph import AgentOrchestrator, build_orchestrator
from legalchat.core.config import API_SECRET
from legalchat.core.errors import EmptyResponseError, ServiceUnavailableError
from legalchat.core.quota_store import get_quota_store
from legalchat.schemas.chat import Artifact, ChatCompleteResponse, ChatRequest, Message
from legalchat.schemas.quota import Identity, QuotaDecision, UsageStats
from legalchat.services.membership import get_membership_directory
from legalchat.services.quota import QuotaGate, is_paid_model

logger = logging.getLogger(__name__)


def get_identity(
    x_user_id: str | None = Header(None),
    x_user_email: str | None = Header(None),
) -> Identity | None:
    """Identity forwarded by the auth layer. None when the request is anonymous."""
    if not x_user_id or not x_user_id.strip():
        return None
    return Identity(user_id=x_user_id.strip(), email=(x_user_email or "").strip() or None)


def require_api_secret(x_api_secret: str | None = Header(None)) -> None:
    if API_SECRET and x_api_secret != API_SECRET:
        raise HTTPException(status_code=401, detail="Invalid API secret")


def format_sse(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def build_turn_messages(body: ChatRequest) -> list[Message]:
    """System prompt first, then the client's conversation without any system messages."""
    history = [m for m in body.messages if m.role != "system"]
    return [Message(role="system", content=body.system_prompt), *history]


def _quota_gate(identity: Identity | None, model_name: str) -> QuotaGate:
    return QuotaGate(identity, model_name, get_quota_store(), get_membership_directory())


def _check_quota(identity: Identity | None, model_name: str) -> QuotaDecision:
    try:
        decision = _quota_gate(identity, model_name).check(is_paid_model(model_name))
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    logger.info(
        "[api:check_quota] user=%s model=%s can_send=%s switch=%s",
        identity.user_id if identity else None,
        model_name,
        decision.can_send_message,
        decision.should_switch_model,
    )
    return decision


def sse_chat_frames(
    orchestrator: AgentOrchestrator,
    messages: list[Message],
    notice: str | None = None,
    cancel_event: threading.Event | None = None,
) -> Iterator[str]:
    """Translate agent progress events into SSE frames. Failures become one error frame."""
    if notice:
        yield format_sse("notice", {"message": notice})
    sent_artifacts: list[Artifact] = []
    events = orchestrator.invoke(messages, cancel_event)
    try:
        for progress in events:
            if progress.type == "response":
                if progress.content:
                    yield format_sse("content", {"content": progress.content})
            else:
                yield format_sse("status", {"content": progress.content})
            new_artifacts = [a for a in progress.artifacts or [] if a not in sent_artifacts]
            if new_artifacts:
                sent_artifacts.extend(new_artifacts)
                yield format_sse("artifacts", {"artifacts": new_artifacts})
    except Exception as e:
        logger.exception("[api:sse_chat_frames] turn failed")
        yield format_sse("error", {"message": str(e)})
    finally:
        # client disconnect closes this generator; close the model stream with it
        events.close()


def handle_chat_stream(body: ChatRequest, identity: Identity | None) -> StreamingResponse | JSONResponse:
    decision = _check_quota(identity, body.model_name)
    if not decision.can_send_message:
        return JSONResponse(status_code=429, content=decision.model_dump())
    orchestrator = build_orchestrator(body.model_name, body.enabled_plugin_ids, body.options)
    messages = build_turn_messages(body)
    return StreamingResponse(
        sse_chat_frames(orchestrator, messages, notice=decision.message if decision.should_switch_model else None),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def handle_chat_complete(body: ChatRequest, identity: Identity | None) -> ChatCompleteResponse | JSONResponse:
    decision = _check_quota(identity, body.model_name)
    if not decision.can_send_message:
        return JSONResponse(status_code=429, content=decision.model_dump())
    orchestrator = build_orchestrator(body.model_name, body.enabled_plugin_ids, body.options)
    try:
        answer = orchestrator.call(build_turn_messages(body))
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except EmptyResponseError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    except Exception as e:
        logger.exception("[api:handle_chat_complete] agent failed")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return ChatCompleteResponse(
        content=answer.content,
        artifacts=answer.artifacts,
        notice=decision.message if decision.should_switch_model else None,
    )


def handle_usage(identity: Identity | None, model_name: str) -> UsageStats:
    try:
        stats = _quota_gate(identity, model_name).usage_stats()
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    if stats is None:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return stats
