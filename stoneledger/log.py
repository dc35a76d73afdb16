# stoneledger/log.py
import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "stoneledger"


def setup_logging(level: str | int = "INFO", console: Console | None = None) -> logging.Logger:
    """Route stoneledger's module loggers to a rich handler on stderr. Idempotent."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
