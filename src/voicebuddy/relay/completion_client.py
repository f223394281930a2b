from __future__ import annotations

import asyncio
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

from .config import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TEMPERATURE, RelayConfig
from .errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


async def _lines_with_idle_timeout(
    lines: AsyncIterator[str], idle_timeout_s: float | None
) -> AsyncIterator[str]:
    iterator = lines.__aiter__()
    while True:
        try:
            if idle_timeout_s:
                line = await asyncio.wait_for(iterator.__anext__(), idle_timeout_s)
            else:
                line = await iterator.__anext__()
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                f"Upstream stream idle for more than {idle_timeout_s:g}s"
            ) from exc
        yield line


def _describe_error_body(status_code: int, data: bytes) -> str:
    text = data.decode(errors="ignore")
    try:
        obj = json.loads(text)
    except ValueError:
        obj = None
    if isinstance(obj, dict):
        err = obj.get("error")
        if isinstance(err, dict) and err.get("message"):
            return f"Upstream returned {status_code}: {err['message']}"
    snippet = text.strip()[:200]
    if snippet:
        return f"Upstream returned {status_code}: {snippet}"
    return f"Upstream returned {status_code}"


def _describe_stream_error(err: Any) -> str:
    message = err.get("message") if isinstance(err, dict) else err
    return str(message or "Upstream stream error")


def _delta_content(obj: Any) -> str:
    if not isinstance(obj, dict):
        return ""
    choices = obj.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class CompletionClient:
    """One streaming chat-completion call per :meth:`stream_chat` invocation.

    Talks to any OpenAI-compatible ``/chat/completions`` endpoint over
    server-sent events. The instance holds configuration only; every call
    opens (and closes) its own HTTP connection.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 120.0,
        idle_timeout_s: float | None = 60.0,
    ):
        if not api_key:
            raise ConfigurationError("Missing OPENAI_API_KEY")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.idle_timeout_s = idle_timeout_s

    @classmethod
    def from_config(cls, cfg: RelayConfig) -> "CompletionClient":
        return cls(
            cfg.api_key,
            model=cfg.model,
            temperature=cfg.temperature,
            base_url=cfg.base_url,
            timeout_s=cfg.backend_timeout_ms / 1000,
            idle_timeout_s=(cfg.stream_idle_timeout_ms / 1000) or None,
        )

    def _payload(self, messages: Sequence[dict[str, str]]) -> dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": m["role"], "content": m["content"]} for m in messages
            ],
            "stream": True,
        }

    async def stream_chat(
        self, messages: Sequence[dict[str, str]]
    ) -> AsyncIterator[str]:
        """Yield non-empty text deltas until the provider signals completion.

        Any failure (HTTP status, transport, in-band error event, idle
        timeout) is raised as :class:`UpstreamError`.
        """

        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = self._payload(messages)
        logger.info(
            "[upstream] POST %s model=%s messages=%d", url, self.model, len(messages)
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as http:
                async with http.stream(
                    "POST", url, json=payload, headers=headers
                ) as resp:
                    if resp.status_code >= 400:
                        data = await resp.aread()
                        raise UpstreamError(_describe_error_body(resp.status_code, data))
                    async with aclosing(
                        _lines_with_idle_timeout(resp.aiter_lines(), self.idle_timeout_s)
                    ) as lines:
                        async for line in lines:
                            if not line or not line.startswith("data:"):
                                continue
                            chunk = line[5:].strip()
                            if chunk == "[DONE]":
                                return
                            try:
                                obj = json.loads(chunk)
                            except ValueError:
                                logger.debug(
                                    "[upstream] Skipping non-JSON event: %r", chunk
                                )
                                continue
                            if isinstance(obj, dict) and obj.get("error"):
                                raise UpstreamError(_describe_stream_error(obj["error"]))
                            content = _delta_content(obj)
                            if content:
                                yield content
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc
