"""Process logging for the relay and the terminal client.

Process logs (``relay.log``, ``chat.log``) sit beside the relay's JSONL
request log, i.e. in the parent directory of ``RelayConfig.log_path``,
unless ``VOICEBUDDY_LOG_DIR`` names another directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional

from .relay.config import RelayConfig

__all__ = ["configure_logging", "log_directory"]

LOG_DIR_ENV = "VOICEBUDDY_LOG_DIR"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# httpx/httpcore log every request at INFO; one line per chat turn is noise.
QUIET_LOGGERS = ("httpx", "httpcore")

_installed: List[logging.Handler] = []


def log_directory(cfg: Optional[RelayConfig] = None) -> Path:
    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    cfg = cfg or RelayConfig.load()
    return Path(cfg.log_path).expanduser().parent


def _drop_installed(root: logging.Logger) -> None:
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()


def configure_logging(
    log_name: str,
    cfg: Optional[RelayConfig] = None,
    *,
    level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    console: bool = True,
) -> Path:
    """Send root logging to ``<name>.log`` next to the request log.

    Handlers from an earlier call are replaced, not stacked.
    """

    directory = Path(log_dir).expanduser() if log_dir else log_directory(cfg)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{log_name}.log"

    root = logging.getLogger()
    _drop_installed(root)

    handlers: List[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed.append(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_path
