"""Process-wide logging bootstrap."""
from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the root logger. Safe to call repeatedly."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
