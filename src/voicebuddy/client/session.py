from __future__ import annotations

import logging
import uuid
from typing import Callable, List, Optional

import httpx

from ..relay.errors import ERROR_MARKER
from ..relay.models import ChatMessage
from .speech import NullSynthesizer, SpeechSynthesizer

logger = logging.getLogger(__name__)

CONNECTION_ISSUE_MESSAGE = "Sorry, I ran into a connection issue."
DISCLAIMER = (
    "Therapy Buddy offers supportive conversation and coping ideas. It is not a "
    "substitute for professional care. If you are in crisis, contact local "
    "emergency services."
)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def reply_failed(message: ChatMessage) -> bool:
    """True when an assistant reply carries the relay's in-band error marker."""
    return message.role == "assistant" and ERROR_MARKER in message.content


class ChatSession:
    """Client-side conversation state for one user.

    ``send`` appends the user turn plus an empty assistant placeholder, streams
    the relay's reply into that placeholder (one ``on_update`` call per chunk)
    and hands the finished reply to the synthesizer.
    """

    def __init__(
        self,
        relay_url: str,
        synthesizer: Optional[SpeechSynthesizer] = None,
        on_update: Optional[Callable[[ChatMessage], None]] = None,
        timeout_s: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.relay_url = relay_url
        self.synthesizer = synthesizer or NullSynthesizer()
        self.on_update = on_update
        self.timeout_s = timeout_s
        self.transport = transport
        self.messages: List[ChatMessage] = []
        self.loading = False

    def history(self) -> list[dict[str, str]]:
        return [m.upstream() for m in self.messages]

    def _notify(self, message: ChatMessage) -> None:
        if self.on_update is not None:
            self.on_update(message)

    async def send(self, text: str) -> Optional[ChatMessage]:
        content = (text or "").strip()
        if not content or self.loading:
            return None

        user_message = ChatMessage(id=_new_id(), role="user", content=content)
        payload = {"messages": self.history() + [user_message.upstream()]}
        assistant = ChatMessage(id=_new_id(), role="assistant", content="")
        self.messages.extend([user_message, assistant])
        self.loading = True
        try:
            await self._stream_reply(payload, assistant)
        except httpx.HTTPError as exc:
            logger.warning("Relay request failed: %s", exc)
            if not assistant.content:
                assistant.content = CONNECTION_ISSUE_MESSAGE
                self._notify(assistant)
        finally:
            self.loading = False
        return assistant

    async def _stream_reply(self, payload: dict, assistant: ChatMessage) -> None:
        async with httpx.AsyncClient(
            timeout=self.timeout_s, transport=self.transport
        ) as http:
            async with http.stream("POST", self.relay_url, json=payload) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode(errors="ignore").strip()
                    logger.error("Relay answered %s: %s", resp.status_code, body)
                    assistant.content = body or CONNECTION_ISSUE_MESSAGE
                    self._notify(assistant)
                    return
                async for chunk in resp.aiter_text():
                    if not chunk:
                        continue
                    assistant.content += chunk
                    self._notify(assistant)
        if assistant.content:
            try:
                self.synthesizer.speak(assistant.content)
            except Exception:  # noqa: BLE001
                logger.exception("Speech synthesis failed")

    async def handle_transcript(self, transcript: str) -> Optional[ChatMessage]:
        """Treat a speech transcript exactly like typed input."""
        if not transcript:
            return None
        return await self.send(transcript)
