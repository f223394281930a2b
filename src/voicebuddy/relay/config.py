from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.8
DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 8300
    enable_metrics: bool = False
    log_path: str = "logs/relay.jsonl"
    max_log_bytes: int = 25_000_000
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    backend_timeout_ms: int = 120_000
    stream_idle_timeout_ms: int = 60_000
    relay_url: str = "http://127.0.0.1:8300/api/chat"
    # Only ever sourced from the environment; never written to the config file.
    api_key: Optional[str] = None
    config_file_path: Optional[str] = None

    @property
    def api_key_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def load(cls) -> "RelayConfig":
        from .config_loader import load_relay_config

        return load_relay_config()
