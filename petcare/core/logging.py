import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger

from ..config import get_settings


def setup_logging():
    """Structured logging setup: JSON lines in production, readable console output otherwise."""
    settings = get_settings()
    use_json = settings.json_logs or settings.is_production

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if use_json:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
        )
    else:
        formatter = logging.Formatter("%(levelname)-8s %(name)s: %(message)s")

    # Setup root logger
    logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, "_petcare_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._petcare_handler = True
    logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())

    logging.getLogger("multipart").setLevel(logging.WARNING)

    return structlog.get_logger()
