"""Schemas for chat messages, agent progress events and the chat endpoints."""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

from legalchat.core.config import DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPERATURE, DEFAULT_TOP_P

# Structured side-payload produced by a tool (e.g. a legal act reference)
Artifact = dict[str, Any]

Role = Literal["system", "user", "assistant"]


def new_message_id() -> str:
    return uuid.uuid4().hex


class Message(BaseModel):
    """One chat message. Content grows while the assistant answer streams."""

    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str = ""
    artifacts: list[Artifact] = Field(default_factory=list)
    data: list[dict[str, Any]] | None = Field(None, description="Auxiliary records sent to the model beside the content.")


class AgentProgress(BaseModel):
    """Single event emitted by the orchestrator, consumed in emission order."""

    type: Literal["status", "tool_execution", "response"]
    content: str
    artifacts: list[Artifact] | None = None


class AgentAnswer(BaseModel):
    """Result of the blocking agent call."""

    content: str
    artifacts: list[Artifact] = Field(default_factory=list)


class ChatCompleteResponse(AgentAnswer):
    """Response for POST /chat/complete."""

    notice: str | None = Field(None, description="Quota warning, e.g. when the paid-model allowance is used up.")


class GenerationOptions(BaseModel):
    """Sampling options forwarded to the language model."""

    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P
    max_tokens: int = DEFAULT_MAX_TOKENS


class ChatRequest(BaseModel):
    """Request body for POST /chat and POST /chat/complete. History is sent by the client."""

    messages: list[Message] = Field(..., min_length=1, description="Conversation so far; the last item is the user query.")
    system_prompt: str = Field(DEFAULT_SYSTEM_PROMPT, description="Prepended as the system message.")
    enabled_plugin_ids: list[str] = Field(default_factory=list, description="Names of the tools the user enabled.")
    model_name: str = Field(DEFAULT_MODEL, min_length=1)
    options: GenerationOptions = Field(default_factory=GenerationOptions)
