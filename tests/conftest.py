import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# The relay app loads its config (and opens its request log) at import time;
# keep both out of the working tree.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="voicebuddy-tests-"))
os.environ.setdefault("VOICEBUDDY_CONFIG_FILE", str(_SESSION_DIR / "voicebuddy.toml"))
os.environ.setdefault("VOICEBUDDY_LOG_PATH", str(_SESSION_DIR / "relay.jsonl"))
os.environ.setdefault("VOICEBUDDY_LOG_DIR", str(_SESSION_DIR / "logs"))


class FakeCompletionClient:
    """Stands in for CompletionClient; records every upstream conversation."""

    model = "fake-model"

    def __init__(self, fragments=(), error=None):
        self.fragments = list(fragments)
        self.error = error
        self.conversations = []
        self.closed = False

    async def stream_chat(self, messages):
        self.conversations.append([dict(m) for m in messages])
        try:
            for fragment in self.fragments:
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


@pytest.fixture
def fake_client_factory():
    def build(fragments=(), error=None):
        return FakeCompletionClient(fragments, error)

    return build
