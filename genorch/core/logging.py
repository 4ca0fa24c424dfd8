import logging
import sys
from typing import Optional

from genorch.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the process"""
    global _configured

    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()

    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _configured = True

    root.setLevel(log_level)

    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
