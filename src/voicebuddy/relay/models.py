from __future__ import annotations

import json
import logging
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]
RELAYED_ROLES = ("user", "assistant")


class ChatMessage(BaseModel):
    role: Role
    content: str
    # Display-only; stripped before anything is sent upstream.
    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> Optional[str]:
        # Clients may number their messages; any id shape is accepted.
        return None if value is None else str(value)

    def upstream(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)


def _coerce_messages(raw: Any) -> List[ChatMessage]:
    if not isinstance(raw, list):
        return []
    out: List[ChatMessage] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            out.append(ChatMessage.model_validate(item))
        except ValidationError:
            # Unknown roles and non-string content are dropped, not rejected.
            continue
    return out


def parse_chat_request(body: bytes | str | None) -> ChatRequest:
    """Parse a relay request body, degrading anything malformed to no history."""

    if not body:
        return ChatRequest()
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError, RecursionError):
        logger.debug("Request body is not valid JSON; treating as empty conversation")
        return ChatRequest()
    if not isinstance(data, dict):
        return ChatRequest()
    return ChatRequest(messages=_coerce_messages(data.get("messages")))
