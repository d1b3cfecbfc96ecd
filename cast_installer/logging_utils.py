from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Union

DEFAULT_LOG_PATH = "/var/log/cast-installer.log"
FALLBACK_LOG_NAME = "cast-installer.log"

LogLevel = Literal["trace", "debug", "info", "warn", "warning", "error"]

# salt has a trace level, stdlib logging does not
_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_HANDLER_NAMES = ("cast-file", "cast-console")


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: Union[LogLevel, int] = "info",
    also_console: bool = True,
) -> str:
    """Attach the installer's file and console handlers to the root logger.

    ``level`` is a level name as accepted by ``--log-level`` or a stdlib level.
    Calling this again replaces the handlers added by the previous call.
    /var/log is not always writable for the invoking user; the log then goes to
    ``cast-installer.log`` in the working directory.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(_LEVELS[level.lower()] if isinstance(level, str) else level)

    for h in list(root.handlers):
        if h.get_name() in _HANDLER_NAMES:
            root.removeHandler(h)
            h.close()

    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        chosen_path = log_path
    except OSError:
        chosen_path = str(Path.cwd() / FALLBACK_LOG_NAME)
        file_handler = logging.FileHandler(chosen_path)
    file_handler.set_name("cast-file")
    handlers: list[logging.Handler] = [file_handler]

    if also_console:
        console = logging.StreamHandler()
        console.set_name("cast-console")
        handlers.append(console)

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)

    logging.getLogger(__name__).info("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path
