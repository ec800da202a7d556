"""Process-wide logging setup."""

import logging

from orderflow.core.config import settings

LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    resolved_level = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved_level, format=LOG_FORMAT)
    root.setLevel(resolved_level)
