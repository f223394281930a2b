from __future__ import annotations

import os
import tempfile
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .config import RelayConfig

CONFIG_FILE_ENV = "VOICEBUDDY_CONFIG_FILE"
ENV_PREFIX = "VOICEBUDDY_"
API_KEY_ENVS = ("OPENAI_API_KEY", "VOICEBUDDY_API_KEY")
DEFAULT_CONFIG_PATH = Path("configs/voicebuddy.toml")

# Keys that never round-trip through the TOML file.
_RUNTIME_ONLY = {"api_key", "config_file_path"}

_SECTION_MAP: dict[str, list[str]] = {
    "server": [
        "host",
        "port",
        "enable_metrics",
        "log_path",
        "max_log_bytes",
    ],
    "upstream": ["base_url", "model", "temperature"],
    "timeouts": ["backend_timeout_ms", "stream_idle_timeout_ms"],
    "client": ["relay_url"],
}


def _field_types() -> dict[str, Any]:
    return {f.name: f.type for f in fields(RelayConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value))


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value))


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


# ``from __future__ import annotations`` leaves dataclass field types as strings.
_CASTERS: dict[Any, Callable[[Any], Any]] = {
    "bool": _coerce_bool,
    "int": _coerce_int,
    "float": _coerce_float,
    "str": _coerce_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    caster = _CASTERS.get(field_type)
    if caster:
        return caster(value)
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _resolve_api_key() -> str | None:
    for name in API_KEY_ENVS:
        value = os.environ.get(name)
        if value and value.strip():
            return value.strip()
    return None


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    env = os.environ
    field_types = _field_types()

    for section_keys in _SECTION_MAP.values():
        for key in section_keys:
            raw = env.get(f"{ENV_PREFIX}{key.upper()}")
            if raw is None:
                continue
            try:
                config[key] = _coerce_value(field_types.get(key), raw)
            except ValueError:
                # Malformed override: keep the file/default value.
                continue
    config["api_key"] = _resolve_api_key()
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(RelayConfig())
    for key in _RUNTIME_ONLY:
        data.pop(key, None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types.get(key), value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    return normalized


def _config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_config(RelayConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))
    return _normalize(base)


def load_relay_config() -> RelayConfig:
    candidate = _config_path()
    _ensure_config_file(candidate)
    normalized = _normalize(_read_config_file(candidate))
    normalized = _apply_env_overrides(normalized)
    cfg = RelayConfig(**normalized)
    cfg.config_file_path = str(candidate)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(config: RelayConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: config_dict[key] for key in keys if key in config_dict}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: RelayConfig, path: Path | None = None) -> None:
    path = Path(path or _config_path()).expanduser()
    lines: list[str] = [
        "# VoiceBuddy relay configuration.",
        "# The provider credential is read from OPENAI_API_KEY, never from this file.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="voicebuddy_config_", suffix=".toml", dir=path.parent
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def update_config_file(updates: dict[str, Any]) -> RelayConfig:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))

    unknown = [key for key in updates if key not in base]
    if unknown:
        raise KeyError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")

    base.update(updates)
    file_config = RelayConfig(**_normalize(base))
    write_config(file_config, path)
    return load_relay_config()


def list_env_overrides() -> dict[str, str]:
    # The credential variable shares the prefix; never echo its value.
    return {
        key: ("***" if key in API_KEY_ENVS else value)
        for key, value in os.environ.items()
        if key.startswith(ENV_PREFIX)
    }
