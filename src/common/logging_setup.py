from __future__ import annotations

import logging
import sys
from typing import Optional


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"
HANDLER_NAME = "assetbot.stdout"


def setup_logging(level: str = "INFO", format_string: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger once for the bot process.

    Every module logs through `logging.getLogger(__name__)`; this only wires a
    stdout handler and the level. Handlers installed by others are left alone,
    and calling it again does not add a second stdout handler.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(h.get_name() == HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(HANDLER_NAME)
        handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
        root.addHandler(handler)
    # httpx logs every request at INFO, which would include the bot token in URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root
