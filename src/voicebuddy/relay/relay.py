from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence

from .errors import error_marker
from .metrics import RelaySample

logger = logging.getLogger(__name__)


class FragmentSource(Protocol):
    model: str

    def stream_chat(self, messages: Sequence[dict[str, str]]) -> AsyncIterator[str]:
        ...


async def _close_upstream(upstream: AsyncIterator[str] | None) -> None:
    aclose = getattr(upstream, "aclose", None)
    if aclose is None:
        return
    # Runs on disconnect too; the close must finish even if this task is cancelled.
    try:
        await asyncio.shield(aclose())
    except Exception:  # noqa: BLE001
        logger.warning("[relay] Error while closing upstream stream", exc_info=True)


async def relay_fragments(
    client: FragmentSource,
    conversation: Sequence[dict[str, str]],
    report: Optional[Callable[[RelaySample], None]] = None,
) -> AsyncIterator[str]:
    """Re-emit upstream fragments as they arrive.

    An upstream failure becomes a final ``[Error] ...`` fragment instead of an
    exception, because the response status has already been committed. The
    upstream iterator is closed on every exit path, including the consumer
    abandoning the stream.
    """

    started_at = time.time()
    first_at: float | None = None
    fragments = 0
    chars = 0
    outcome = "cancelled"
    upstream: AsyncIterator[str] | None = None
    try:
        try:
            upstream = client.stream_chat(conversation)
            async for fragment in upstream:
                if not fragment:
                    continue
                if first_at is None:
                    first_at = time.time()
                fragments += 1
                chars += len(fragment)
                yield fragment
            outcome = "completed"
        except Exception as exc:  # noqa: BLE001
            outcome = "upstream_error"
            logger.warning(
                "[relay] Upstream failed after %d fragment(s): %s", fragments, exc
            )
            yield error_marker(exc)
    finally:
        if outcome == "cancelled":
            logger.info("[relay] Caller went away after %d fragment(s)", fragments)
        if report is not None:
            report(
                RelaySample(
                    ts=time.time(),
                    model=getattr(client, "model", "unknown"),
                    outcome=outcome,
                    ttff_ms=(first_at - started_at) * 1000 if first_at else None,
                    fragments=fragments,
                    chars=chars,
                    duration_ms=(time.time() - started_at) * 1000,
                )
            )
        await _close_upstream(upstream)
