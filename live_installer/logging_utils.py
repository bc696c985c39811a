from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Tuple

from .lib.env import PATHS

DEFAULT_LOG_PATH = PATHS.log_default
FALLBACK_LOG_NAME = "live-installer.log"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def parse_level(name: str) -> int:
    try:
        return LOG_LEVELS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"invalid log level: {name} (choose from {', '.join(sorted(LOG_LEVELS))})") from None


def _file_handler(log_path: str) -> Tuple[logging.Handler, str]:
    """Open the requested log file, or one in the working directory."""

    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        # Live media often mounts /var/log read-only.
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Configure root logging for the installer process.

    Handlers are installed once; later calls only change the level.
    Returns the log file actually written to.
    """

    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_live_installer_log_path", None):
        return root._live_installer_log_path  # type: ignore[attr-defined]

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    file_handler, chosen_path = _file_handler(log_path)

    handlers: List[logging.Handler] = [file_handler]
    if also_console:
        handlers.append(logging.StreamHandler())

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)

    setattr(root, "_live_installer_log_path", chosen_path)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s, level=%s)",
        log_path,
        chosen_path,
        logging.getLevelName(level),
    )
    return chosen_path
