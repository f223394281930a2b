"""Speech capture and synthesis collaborators.

Both capabilities are platform dependent, so each exposes a ``supported``
flag and degrades to a no-op rather than raising when the host has nothing
to offer. The chat loop only ever sees transcripts (as plain text) and calls
``speak`` once per finished reply.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Callable, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]
EndCallback = Callable[[], None]

# First match on PATH wins.
TTS_COMMANDS: Sequence[Sequence[str]] = (
    ("say",),
    ("espeak-ng",),
    ("espeak",),
    ("spd-say", "--wait"),
)


class SpeechRecognizer(Protocol):
    supported: bool

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def on_result(self, callback: TranscriptCallback) -> None:
        ...

    def on_error(self, callback: ErrorCallback) -> None:
        ...

    def on_end(self, callback: EndCallback) -> None:
        ...


class SpeechSynthesizer(Protocol):
    supported: bool

    def speak(self, text: str) -> None:
        ...


class UnsupportedRecognizer:
    """Recognizer for hosts without speech capture; input stays text-only."""

    supported = False

    def __init__(self):
        self.listening = False
        self._on_result: Optional[TranscriptCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._on_end: Optional[EndCallback] = None

    def start(self) -> None:
        logger.debug("Speech capture requested but not supported on this host")

    def stop(self) -> None:
        self.listening = False

    def on_result(self, callback: TranscriptCallback) -> None:
        self._on_result = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._on_error = callback

    def on_end(self, callback: EndCallback) -> None:
        self._on_end = callback


class NullSynthesizer:
    supported = False

    def speak(self, text: str) -> None:
        return None


class CommandSynthesizer:
    """Speak through a text-to-speech command line tool.

    A new utterance cancels one that is still playing.
    """

    def __init__(self, command: Optional[Sequence[str]] = None):
        self.command = list(command) if command else _find_tts_command()
        self.supported = bool(self.command)
        self._current: Optional[subprocess.Popen] = None

    def cancel(self) -> None:
        proc = self._current
        self._current = None
        if proc is not None and proc.poll() is None:
            proc.terminate()

    def speak(self, text: str) -> None:
        text = text.strip()
        if not self.supported or not text:
            return
        self.cancel()
        try:
            self._current = subprocess.Popen(
                [*self.command, text],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("Speech synthesis via %s failed: %s", self.command[0], exc)


def _find_tts_command() -> Optional[list[str]]:
    for candidate in TTS_COMMANDS:
        if shutil.which(candidate[0]):
            return list(candidate)
    return None


def detect_synthesizer() -> SpeechSynthesizer:
    synth = CommandSynthesizer()
    if synth.supported:
        logger.info("Speech synthesis via %s", synth.command[0])
        return synth
    logger.info("No text-to-speech command found; replies will not be spoken")
    return NullSynthesizer()


def detect_recognizer() -> SpeechRecognizer:
    # No capture backend ships with the package; hosts plug one in by
    # implementing SpeechRecognizer.
    return UnsupportedRecognizer()
