"""JSON logging configuration for certshop export operations."""

import logging
import sys

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "certshop"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter emitting one compact object per log line.

    Keeps timestamp, level, message, exc_info, funcName and lineno. Extra
    fields passed through ``extra=`` (e.g. ``path``) are kept as well so
    export context survives into the diagnostic line.
    """

    dropped_fields = {"name", "taskName"}

    def add_fields(self, log_record, record, message_dict):
        """Rename levelname to level and drop verbose record attributes.

        Args:
            log_record: Dict to be logged as JSON
            record: LogRecord object from logging framework
            message_dict: Dict containing message and args
        """
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        for key in [key for key in log_record if key in self.dropped_fields]:
            log_record.pop(key)


def _setup_logger() -> logging.Logger:
    """Initialize the package logger writing to stderr.

    Standard output carries exported bundles, so diagnostics never go there.

    Returns:
        Configured logger with CustomJsonFormatter
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stderr)
    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
        timestamp=True,
    )
    handler.setFormatter(formatter)

    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def configure_logging(debug: bool = False) -> logging.Logger:
    """Return the package logger, at DEBUG level when ``debug`` is set."""
    logger = _setup_logger()
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger


# Default handle; components accept an explicit logger and fall back to this
LOGGER = _setup_logger()
