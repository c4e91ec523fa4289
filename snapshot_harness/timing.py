from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


def settle(seconds: float, reason: str) -> None:
    """
    Wait a fixed amount of time in place of a completion signal.

    Block production and snapshot writes are not observable from the harness,
    so every such wait goes through here.
    """
    if seconds <= 0:
        return
    logger.debug("Settling %.1fs: %s", seconds, reason)
    time.sleep(seconds)
