from __future__ import annotations

import logging
from pathlib import Path

DEFAULT_LOG_PATH = "logs/umini-build.log"

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_CONSOLE_FORMAT = "[%(levelname)s] %(message)s"


def _open_build_log(requested: Path) -> tuple[logging.Handler, Path]:
    try:
        requested.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(requested, encoding="utf-8"), requested
    except OSError:
        local = Path.cwd() / requested.name
        return logging.FileHandler(local, encoding="utf-8"), local


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send build logs to a file and, optionally, the terminal.

    The build log always records DEBUG, so captured command output ends up
    in the file even when the console only shows ``level``. When the
    requested directory is not writable the log is written to the current
    directory instead.

    Safe to call more than once: later calls only change the console level.
    Returns the path of the log file in use.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = getattr(root, "_umini_console", None)
    if getattr(root, "_umini_log_path", None):
        if console is not None:
            console.setLevel(level)
        return root._umini_log_path  # type: ignore[attr-defined]

    file_handler, actual = _open_build_log(Path(log_path))
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        root.addHandler(console)

    root._umini_console = console  # type: ignore[attr-defined]
    root._umini_log_path = str(actual)  # type: ignore[attr-defined]

    logging.getLogger(__name__).info("Build log: %s", actual)
    if str(actual) != log_path:
        logging.getLogger(__name__).warning("%s is not writable, logging to %s", log_path, actual)
    return str(actual)
