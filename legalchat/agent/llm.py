"""
Agent LLM: OpenAI for OpenAI models, Hugging Face router for everything else.

Both providers are consumed as streams. `LanguageModelClient.run` returns a lazy,
non-restartable iterator of chunks; closing it early closes the provider stream.
"""

import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from openai import OpenAI

from legalchat.core.config import (
    DEFAULT_MODEL,
    HF_API_KEY,
    HF_CHAT_URL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_MODEL_PREFIXES,
)
from legalchat.core.errors import ServiceUnavailableError
from legalchat.schemas.chat import GenerationOptions, Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMChunk:
    text: str


class LanguageModel(Protocol):
    """Anything that can stream text for a list of messages."""

    def run(self, messages: Sequence[Message], options: GenerationOptions | None = None) -> Iterator[LLMChunk]: ...


def is_openai_model(model_name: str) -> bool:
    name = (model_name or "").strip().lower()
    return name.startswith(OPENAI_MODEL_PREFIXES)


def _context_block(message: Message) -> str:
    """Render auxiliary records and artifacts of a message as side-channel context."""
    parts: list[str] = []
    for record in message.data or []:
        content = record.get("content") if isinstance(record, dict) else None
        if isinstance(content, str):
            parts.append(content)
        else:
            parts.append(json.dumps(record, ensure_ascii=False, default=str))
    if message.artifacts:
        parts.append("Artifacts:\n" + json.dumps(message.artifacts, ensure_ascii=False, default=str))
    if not parts:
        return ""
    return "Context data:\n" + "\n\n".join(parts)


def to_provider_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    """
    Convert chat messages to the chat-completions format.
    Auxiliary data never goes into a message's own content: it is sent as a
    separate system message placed right before the message that carries it.
    """
    out: list[dict[str, Any]] = []
    for m in messages:
        context = _context_block(m)
        if context:
            out.append({"role": "system", "content": context})
        out.append({"role": m.role, "content": m.content})
    return out


class LanguageModelClient:
    """Streaming chat-completions client bound to one model."""

    def __init__(self, model_name: str = DEFAULT_MODEL, options: GenerationOptions | None = None) -> None:
        self.model_name = model_name
        self.options = options or GenerationOptions()

    def run(self, messages: Sequence[Message], options: GenerationOptions | None = None) -> Iterator[LLMChunk]:
        opts = options or self.options
        payload = to_provider_messages(messages)
        logger.info(
            "[llm:run] IN  model=%s messages=%d payload_len=%d",
            self.model_name,
            len(payload),
            sum(len(m["content"] or "") for m in payload),
        )
        if is_openai_model(self.model_name):
            if not OPENAI_API_KEY:
                raise ServiceUnavailableError(f"Model {self.model_name} requires OPENAI_API_KEY")
            return self._stream_openai(payload, opts)
        if not HF_API_KEY:
            raise ServiceUnavailableError(f"Model {self.model_name} requires HF_API_KEY")
        return self._stream_hf(payload, opts)

    def _stream_openai(self, payload: list[dict[str, Any]], opts: GenerationOptions) -> Iterator[LLMChunk]:
        client = OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)
        stream = client.chat.completions.create(
            model=self.model_name,
            messages=payload,
            temperature=opts.temperature,
            top_p=opts.top_p,
            max_tokens=opts.max_tokens,
            stream=True,
        )
        total = 0
        try:
            for chunk in stream:
                if not chunk.choices:
                    continue
                text = getattr(chunk.choices[0].delta, "content", None)
                if text:
                    total += len(text)
                    yield LLMChunk(text)
        finally:
            stream.close()
            logger.info("[llm:openai] OUT streamed_len=%d", total)

    def _stream_hf(self, payload: list[dict[str, Any]], opts: GenerationOptions) -> Iterator[LLMChunk]:
        headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
        body = {
            "model": self.model_name,
            "messages": payload,
            "temperature": opts.temperature,
            "top_p": opts.top_p,
            "max_tokens": opts.max_tokens,
            "stream": True,
        }
        total = 0
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            with client.stream("POST", HF_CHAT_URL, json=body, headers=headers) as response:
                if response.status_code != 200:
                    response.read()
                    logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
                    raise ServiceUnavailableError(f"HF LLM error {response.status_code}")
                for line in response.iter_lines():
                    text = _parse_sse_delta(line)
                    if text is None:
                        continue
                    if text == "":
                        break
                    total += len(text)
                    yield LLMChunk(text)
        logger.info("[llm:hf] OUT streamed_len=%d", total)


def _parse_sse_delta(line: str) -> str | None:
    """
    Extract the content delta from one SSE line of a chat-completions stream.
    Returns None for lines without content and "" for the [DONE] terminator.
    """
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return ""
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("[llm:hf] skipping malformed stream line=%r", data[:200])
        return None
    choices = event.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None
