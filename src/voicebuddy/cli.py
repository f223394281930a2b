"""Typer CLI: run the relay or chat with it from a terminal."""

from __future__ import annotations

import asyncio
import json
import queue
from dataclasses import asdict
from typing import Optional

import typer

from .client.session import DISCLAIMER, ChatSession, reply_failed
from .client.speech import (
    NullSynthesizer,
    SpeechRecognizer,
    detect_recognizer,
    detect_synthesizer,
)
from .logging_utils import configure_logging
from .relay.config import RelayConfig
from .relay.models import ChatMessage

app = typer.Typer(help="VoiceBuddy relay server and terminal chat client")

QUIT_COMMANDS = {"/quit", "/exit"}


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Listen port"),
):
    """Run the streaming relay under uvicorn."""
    import uvicorn

    cfg = RelayConfig.load()
    configure_logging("relay", cfg)
    if not cfg.api_key_configured:
        typer.echo(
            "[voicebuddy] WARNING: OPENAI_API_KEY is not set; chat requests will fail.",
            err=True,
        )
    uvicorn.run(
        "voicebuddy.relay.app:app", host=host or cfg.host, port=port or cfg.port
    )


@app.command("config")
def cmd_config():
    """Print the effective configuration (credential redacted)."""
    cfg = RelayConfig.load()
    data = asdict(cfg)
    data["api_key"] = "***" if cfg.api_key_configured else None
    typer.echo(json.dumps(data, indent=2))


class _TerminalPrinter:
    """Echo only the newly arrived part of the assistant placeholder."""

    def __init__(self):
        self._printed: dict[str, int] = {}

    def __call__(self, message: ChatMessage) -> None:
        key = message.id or ""
        seen = self._printed.get(key, 0)
        if len(message.content) < seen:
            seen = 0
            typer.echo("")
        typer.echo(message.content[seen:], nl=False)
        self._printed[key] = len(message.content)


def _reply(message: Optional[ChatMessage]) -> None:
    typer.echo("")
    if message is not None and reply_failed(message):
        typer.echo("(the reply was cut short by an upstream error)", err=True)


def _attach(recognizer: SpeechRecognizer) -> "queue.Queue[object]":
    # Recognizer callbacks may fire on another thread; they only enqueue.
    events: "queue.Queue[object]" = queue.Queue()
    recognizer.on_result(events.put)
    recognizer.on_error(events.put)
    recognizer.on_end(lambda: events.put(None))
    return events


def _listen_once(recognizer: SpeechRecognizer, events: "queue.Queue[object]") -> str:
    """Capture one utterance. Returns "" if capture ended without one."""
    while not events.empty():
        events.get_nowait()
    recognizer.start()
    try:
        event = events.get()
    finally:
        recognizer.stop()
    if isinstance(event, Exception):
        typer.echo(f"Speech recognition failed: {event}", err=True)
        return ""
    return str(event or "").strip()


@app.command("chat")
def cmd_chat(
    relay_url: Optional[str] = typer.Option(
        None, "--relay-url", help="Relay chat endpoint (defaults to config)"
    ),
    speak: bool = typer.Option(True, "--speak/--no-speak", help="Speak replies"),
    voice: bool = typer.Option(False, "--voice", help="Use speech input if available"),
):
    """Interactive chat session against a running relay.

    With ``--voice`` and a working recognizer, an empty line captures one
    spoken utterance and sends its transcript.
    """
    cfg = RelayConfig.load()
    configure_logging("chat", cfg, console=False)
    typer.echo(DISCLAIMER)

    session = ChatSession(
        relay_url or cfg.relay_url,
        synthesizer=detect_synthesizer() if speak else NullSynthesizer(),
        on_update=_TerminalPrinter(),
        timeout_s=cfg.backend_timeout_ms / 1000,
    )
    recognizer = detect_recognizer() if voice else None
    events = None
    if recognizer is not None and recognizer.supported:
        events = _attach(recognizer)
        typer.echo("Press Enter on an empty line to speak.")
    elif recognizer is not None:
        typer.echo("Voice recognition is not supported here; using text input.")

    typer.echo("Start a conversation by typing below (/quit to leave).")
    while True:
        try:
            text = typer.prompt("you", default="", show_default=False, prompt_suffix="> ")
        except (EOFError, typer.Abort):
            break
        if text.strip().lower() in QUIT_COMMANDS:
            break
        if not text.strip():
            if events is None:
                continue
            transcript = _listen_once(recognizer, events)
            if not transcript:
                continue
            typer.echo(f"(heard) {transcript}")
            typer.echo("buddy> ", nl=False)
            _reply(asyncio.run(session.handle_transcript(transcript)))
            continue
        typer.echo("buddy> ", nl=False)
        _reply(asyncio.run(session.send(text)))


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
