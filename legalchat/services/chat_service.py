"""
Chat client: submit a query to the backend and stream the answer into a local
conversation.

One ChatSession is one conversation. A submit adds the user message and an empty
assistant message, posts the history to /chat, and feeds the SSE body to the
StreamProcessor. A quota block removes the pending assistant message and reports
the decision; a stopped turn keeps whatever was streamed.
"""

import logging
import threading
from collections.abc import Callable

import httpx

from legalchat.core.config import DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT, LLM_API_TIMEOUT
from legalchat.core.session_store import MessageStore
from legalchat.schemas.chat import GenerationOptions, Message
from legalchat.schemas.quota import Identity, QuotaDecision
from legalchat.services.stream_processor import StreamProcessor

logger = logging.getLogger(__name__)


def _ignore(*_args) -> None:
    return None


class ChatSession:
    def __init__(
        self,
        client: httpx.Client,
        identity: Identity,
        *,
        model_name: str = DEFAULT_MODEL,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        enabled_plugin_ids: list[str] | None = None,
        options: GenerationOptions | None = None,
        api_secret: str | None = None,
        on_status: Callable[[str | None], None] = _ignore,
        on_error: Callable[[Exception], None] = _ignore,
        on_notice: Callable[[str], None] = _ignore,
    ) -> None:
        self.client = client
        self.identity = identity
        self.model_name = model_name
        self.system_prompt = system_prompt
        self.enabled_plugin_ids = list(enabled_plugin_ids or [])
        self.options = options or GenerationOptions()
        self.api_secret = api_secret
        self.on_status = on_status
        self.on_error = on_error
        self.on_notice = on_notice
        self.store = MessageStore()
        self.last_decision: QuotaDecision | None = None
        self._cancel_event: threading.Event | None = None

    @property
    def messages(self) -> list[Message]:
        return self.store.messages()

    def _headers(self) -> dict[str, str]:
        headers = {"X-User-Id": self.identity.user_id}
        if self.identity.email:
            headers["X-User-Email"] = self.identity.email
        if self.api_secret:
            headers["X-Api-Secret"] = self.api_secret
        return headers

    def _payload(self, history: list[Message]) -> dict:
        return {
            "messages": [m.model_dump() for m in history],
            "system_prompt": self.system_prompt,
            "enabled_plugin_ids": self.enabled_plugin_ids,
            "model_name": self.model_name,
            "options": self.options.model_dump(),
        }

    def _get_response(self, history: list[Message]) -> Message | None:
        """Stream one answer for the given history into a new assistant message."""
        assistant = Message(role="assistant", content="", artifacts=[], data=[])
        self.store.add_message(assistant)
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        processor = StreamProcessor(self.store, self.on_status, self.on_error, self.on_notice)
        self.on_status(None)
        try:
            with self.client.stream(
                "POST",
                "/chat",
                json=self._payload(history),
                headers=self._headers(),
                timeout=LLM_API_TIMEOUT,
            ) as response:
                if response.status_code == 429:
                    response.read()
                    self.last_decision = QuotaDecision.model_validate(response.json())
                    self.store.remove_message(assistant.id)
                    self.on_notice(self.last_decision.message or "")
                    logger.info("[chat_service:get_response] blocked by quota: %s", self.last_decision.message)
                    return None
                if response.status_code != 200:
                    response.read()
                    raise httpx.HTTPStatusError(
                        f"HTTP error! status: {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                self.last_decision = QuotaDecision(can_send_message=True)
                return processor.process_stream(response.iter_bytes(), assistant.id, cancel_event)
        except Exception as e:
            if cancel_event.is_set():
                return self.store.get(assistant.id)
            logger.warning("[chat_service:get_response] request failed: %s", e)
            self.on_error(e)
            return self.store.get(assistant.id)
        finally:
            self.on_status(None)
            self._cancel_event = None

    def submit(self, text: str) -> Message | None:
        """Send a user message. Returns the assistant message, or None when nothing was sent."""
        if not (text or "").strip():
            return None
        user_message = Message(role="user", content=text)
        self.store.add_message(user_message)
        return self._get_response(self.store.messages())

    def stop_generating(self) -> None:
        """Cancel the in-flight turn; the partial answer stays in the conversation."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    def regenerate(self, message_id: str) -> Message | None:
        """Replace an assistant answer (and everything after it) with a fresh one."""
        message = self.store.get(message_id)
        if message.role != "assistant":
            return None
        history = self.store.truncate_before(message_id)
        return self._get_response(history)

    def edit_message(self, message_id: str, content: str) -> Message | None:
        """Edit a message. Editing a user message drops later messages and asks again."""
        message = self.store.get(message_id)
        if message.role != "user":
            self.store.set_content(message_id, content)
            return None
        self.store.truncate_before(message_id)
        self.store.add_message(message.model_copy(update={"content": content}))
        return self._get_response(self.store.messages())

    def clear(self) -> None:
        self.store.clear()
