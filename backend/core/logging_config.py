# backend/core/logging_config.py

import logging
from typing import Optional

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None):
    """Configure root logging for the API process."""
    level_name = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )

    # SQLAlchemy is noisy at INFO unless query logging was requested
    if not settings.log_sql_queries:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
