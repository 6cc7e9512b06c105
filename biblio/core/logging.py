import logging
import sys

from biblio.core.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Libraries that log every statement or request at INFO.
_CHATTY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "httpx")


def setup_logging(level: str | None = None) -> None:
    """
    Send every logger to stdout at ``level`` (default: ``settings.log_level``).

    Loan transitions log at INFO under ``biblio.services.loan``; guard
    decisions log at DEBUG under ``biblio.auth.middleware``.
    """
    resolved = (level or settings.log_level).upper()
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    if resolved != "DEBUG":
        for name in _CHATTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
