"""
Logging setup shared by the API and batch entry points
"""
import logging
from typing import Optional

from owner_resolution.config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from settings unless a level is given"""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
