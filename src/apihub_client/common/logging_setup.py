"""Central logging setup for the project."""
from __future__ import annotations
import logging
import sys

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configure root logger for CLI processes.

    Logs go to stderr so command output on stdout stays machine-readable.

    Args:
        level: Logging level.
    """
    handler = logging.StreamHandler(sys.stderr)
    fmt = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
