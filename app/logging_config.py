from __future__ import annotations

import logging
import sys

from app.config import settings


LOG_FORMAT = '%(asctime)s [%(levelname)-5s] %(name)s: %(message)s'

_configured = False


def configure_logging(level: str | int | None = None) -> None:
    """Attach a single stdout handler to the root logger.

    Safe to call from both the web app and the sync CLI; only the first call
    installs the handler.
    """
    global _configured
    if _configured:
        return

    resolved = level if level is not None else settings.log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(resolved)
    root.addHandler(handler)

    # engine echo is noisy at INFO
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    _configured = True
