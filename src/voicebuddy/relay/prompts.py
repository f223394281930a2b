"""Fixed persona prompt and outbound conversation assembly."""

from __future__ import annotations

from typing import Iterable

from .models import RELAYED_ROLES, ChatMessage

SYSTEM_PROMPT = """You are "Therapy Buddy", a supportive, compassionate, voice-based CBT-informed companion.
- You are not a licensed therapist. Provide general emotional support and coping strategies.
- Encourage reflection, name emotions, validate feelings, and offer gentle, practical suggestions (CBT/DBT/ACT-inspired).
- Keep responses concise, warm, and spoken-friendly (short sentences, natural cadence).
- Avoid diagnoses or medical advice. If there is risk of harm, advise contacting local emergency services or a trusted person.
"""


def build_conversation(messages: Iterable[ChatMessage]) -> list[dict[str, str]]:
    """Return the upstream conversation: system prompt, then user/assistant turns.

    Caller-supplied ``system`` messages are dropped so the persona prompt is
    always the only system message, at index 0.
    """

    conversation = [{"role": "system", "content": SYSTEM_PROMPT}]
    conversation.extend(m.upstream() for m in messages if m.role in RELAYED_ROLES)
    return conversation
