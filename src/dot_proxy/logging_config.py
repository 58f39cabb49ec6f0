import logging
import json
import sys

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Extra fields that transaction and index code attach via ``extra=``
CONTEXT_FIELDS = ("repository", "action", "transaction_id", "attempt", "project_key")


class SafeStreamHandler(logging.StreamHandler):
    """
    Stream handler that gracefully handles closed streams during shutdown.
    """

    def handleError(self, record):
        error = sys.exc_info()[1]
        if isinstance(error, (ValueError, OSError)):
            # stderr may already be closed when an interrupted command exits
            text = str(error).lower()
            if "closed file" in text or "bad file descriptor" in text:
                return
        super().handleError(record)


class StructuredLogFormatter(logging.Formatter):
    """
    Formats log records as structured JSON with contextual fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            log_record["exception"] = record.exc_text
        return json.dumps(log_record, ensure_ascii=False)


def verbosity_to_level(verbose: int) -> int:
    """Map the repeatable ``-v`` flag onto a logging level."""
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def configure_logging(log_level="WARNING", json_output: bool = False) -> None:
    """
    Centralized logging configuration for dot.
    Sets up the root logger on stderr, as JSON or as plain text.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = SafeStreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    root_logger.addHandler(handler)
    if isinstance(log_level, str):
        log_level = log_level.upper()
    root_logger.setLevel(log_level)
    # Silence overly verbose loggers
    logging.getLogger("asyncio").setLevel("WARNING")
    logging.getLogger("aiohttp").setLevel("WARNING")
    logging.getLogger("git").setLevel("WARNING")
