"""
Logging setup for scripts and workers
"""
import logging
from typing import Optional

from adops.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; level defaults to settings.LOG_LEVEL."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # requests/urllib3 connection chatter
    logging.getLogger("urllib3").setLevel(logging.WARNING)
