"""Logging setup for the forkpreview command line."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``forkpreview`` logger.

    Safe to call more than once; later calls only adjust the level.
    """

    root = logging.getLogger("forkpreview")
    root.setLevel(level.upper())
    if not any(getattr(h, "_forkpreview", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._forkpreview = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    return root
