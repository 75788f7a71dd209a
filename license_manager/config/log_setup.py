"""Process-wide logging setup for the CLI and the HTTP trigger."""
from __future__ import annotations
import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stderr handler on the root logger.

    Calling it again replaces the handler instead of stacking a second one.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_license_manager", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._license_manager = True
    root.addHandler(handler)
    root.setLevel(level)

    # urllib3 logs every retry at WARNING; keep it quieter than our own output
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
