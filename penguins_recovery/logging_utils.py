from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Tuple

DEFAULT_LOG_PATH = "/var/log/penguins-recovery-adapter.log"
FALLBACK_LOG_NAME = "penguins-adapter.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Handlers this module put on the root logger, and the file they write to.
_installed: List[logging.Handler] = []
_log_path: Optional[str] = None


def console_level(verbose: bool = False, quiet: bool = False) -> int:
    if quiet:
        return logging.WARNING
    return logging.DEBUG if verbose else logging.INFO


def add_verbosity_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("-v", "--verbose", action="store_true", help="Show command output on the console")
    group.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors on the console")


def open_log_file(log_path: str) -> Tuple[logging.FileHandler, str]:
    """FileHandler for log_path, or for ./penguins-adapter.log if that cannot be written."""

    try:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / FALLBACK_LOG_NAME)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    *,
    console: Optional[int] = logging.INFO,
) -> str:
    """Send everything to the log file and `console` and above to stderr.

    The file always gets DEBUG, so command output lands there whatever the
    console shows. console=None means no console handler. A second call only
    adjusts the console level. Returns the log file actually used.
    """

    global _log_path

    root = logging.getLogger()
    if _installed:
        for h in _installed:
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler):
                h.setLevel(console if console is not None else logging.CRITICAL + 1)
        return _log_path or log_path

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    file_handler, chosen = open_log_file(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    _installed.append(file_handler)

    if console is not None:
        stream = logging.StreamHandler()
        stream.setLevel(console)
        stream.setFormatter(fmt)
        _installed.append(stream)

    root.setLevel(logging.DEBUG)
    for h in _installed:
        root.addHandler(h)
    _log_path = chosen

    log = logging.getLogger(__name__)
    if chosen != log_path:
        log.warning("Cannot write %s; logging to %s instead", log_path, chosen)
    log.info("Logging to %s", chosen)
    return chosen


def reset_logging() -> None:
    """Remove the handlers configure_logging() added; other handlers stay."""

    global _log_path

    root = logging.getLogger()
    while _installed:
        h = _installed.pop()
        root.removeHandler(h)
        h.close()
    _log_path = None
