from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .completion_client import CompletionClient
from .config import RelayConfig
from .config_loader import list_env_overrides, load_file_config, update_config_file
from .errors import (
    CONFIG_ERROR_MESSAGE,
    RelayHTTPError,
    err_invalid_config_update,
    err_metrics_disabled,
)
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator, RelaySample
from .models import parse_chat_request
from .prompts import build_conversation
from .relay import relay_fragments

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_cfg = RelayConfig.load()
_metrics = MetricsAggregator()
_logger = JsonlLogger(_cfg.log_path, _cfg.max_log_bytes)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}
CONFIG_PRECEDENCE = [
    "Environment variables (VOICEBUDDY_*, OPENAI_API_KEY)",
    "Config file (configs/voicebuddy.toml)",
    "Built-in defaults",
]

app = FastAPI(title="VoiceBuddy Relay", version="0.1")


def _build_client(cfg: RelayConfig) -> CompletionClient:
    return CompletionClient.from_config(cfg)


def _record(sample: RelaySample, message_count: int) -> None:
    _metrics.add(sample)
    _logger.log(
        {
            "model": sample.model,
            "messages": message_count,
            "fragments": sample.fragments,
            "chars": sample.chars,
            "outcome": sample.outcome,
            "duration_ms": round(sample.duration_ms, 1),
        }
    )


@app.exception_handler(RelayHTTPError)
async def _relay_http_error(_: Request, exc: RelayHTTPError):
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.post("/api/chat")
async def chat(req: Request):
    if not _cfg.api_key_configured:
        logger.error("[app] Rejecting chat request: no provider credential configured")
        return PlainTextResponse(CONFIG_ERROR_MESSAGE, status_code=500)

    chat_request = parse_chat_request(await req.body())
    conversation = build_conversation(chat_request.messages)
    client = _build_client(_cfg)

    logger.info(
        "[app] Relaying conversation: %d caller message(s), %d upstream",
        len(chat_request.messages),
        len(conversation),
    )
    message_count = len(conversation)
    return StreamingResponse(
        relay_fragments(
            client,
            conversation,
            report=lambda sample: _record(sample, message_count),
        ),
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


@app.get("/v1/health")
async def health():
    return {
        "status": "ok",
        "uptime_seconds": _metrics.summary().get("uptime_seconds"),
        "api_key_configured": _cfg.api_key_configured,
    }


@app.get("/v1/metrics")
async def metrics_api():
    if not _cfg.enable_metrics:
        raise err_metrics_disabled()
    return _metrics.summary()


def _public_runtime(cfg: RelayConfig) -> tuple[dict[str, Any], str | None]:
    runtime = asdict(cfg)
    runtime.pop("api_key", None)
    config_path = runtime.pop("config_file_path", None)
    runtime["api_key_configured"] = cfg.api_key_configured
    return runtime, config_path


@app.get("/v1/config/relay")
async def read_relay_config():
    runtime, config_path = _public_runtime(RelayConfig.load())
    return JSONResponse(
        content={
            "runtime": runtime,
            "file": load_file_config(),
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
        }
    )


@app.put("/v1/config/relay")
async def update_relay_config(payload: dict[str, Any] = Body(...)):
    if not payload:
        raise err_invalid_config_update("Request body must be a non-empty object.")
    if "api_key" in payload:
        raise err_invalid_config_update(
            "The provider credential is read from OPENAI_API_KEY only."
        )
    try:
        updated = update_config_file(payload)
    except KeyError as exc:
        raise err_invalid_config_update(str(exc.args[0])) from exc

    runtime, config_path = _public_runtime(updated)
    return JSONResponse(
        content={
            "status": "written",
            "runtime": runtime,
            "file": load_file_config(),
            "config_file_path": config_path,
            "env_overrides": list_env_overrides(),
            "precedence": CONFIG_PRECEDENCE,
            "requires_restart": True,
            "message": "Config file updated. Restart the relay to apply changes.",
        }
    )


def main():  # pragma: no cover
    import uvicorn

    from ..logging_utils import configure_logging

    configure_logging("relay", _cfg)
    uvicorn.run(app, host=_cfg.host, port=_cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
