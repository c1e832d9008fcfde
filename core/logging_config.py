import logging
import sys

from core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process and the Celery worker."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # SQL echo is controlled by SQLALCHEMY_ECHO, keep the engine logger quiet otherwise
    if not settings.SQLALCHEMY_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
