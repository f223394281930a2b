from __future__ import annotations

from fastapi import HTTPException

CONFIG_ERROR_MESSAGE = "Server configuration error: missing OPENAI_API_KEY."
ERROR_MARKER = "[Error]"


class ConfigurationError(RuntimeError):
    """The provider credential is missing; raised before any network call."""


class UpstreamError(RuntimeError):
    """The provider call failed before or during streaming."""


class RelayHTTPError(HTTPException):
    def __init__(
        self, status_code: int, err_type: str, message: str, hint: str | None = None
    ):
        payload = {"error": {"type": err_type, "code": status_code, "message": message}}
        if hint:
            payload["error"]["hint"] = hint
        super().__init__(status_code=status_code, detail=payload)


def err_metrics_disabled() -> RelayHTTPError:
    return RelayHTTPError(
        404, "disabled", "Metrics disabled", "Set VOICEBUDDY_ENABLE_METRICS=1"
    )


def err_invalid_config_update(reason: str) -> RelayHTTPError:
    return RelayHTTPError(400, "invalid_config", reason)


def error_marker(exc: BaseException) -> str:
    """In-band notice appended to a reply whose upstream call failed."""
    message = str(exc).strip() or exc.__class__.__name__
    return f"\n{ERROR_MARKER} {message}"
