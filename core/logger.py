import logging
import sys
import structlog
from config import config
from datetime import datetime

_is_configured = False

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def _file_handler(formatter: logging.Formatter) -> logging.Handler:
    # One file per run: logs/formmaster.log -> logs/formmaster_20250101_120000.log
    log_path = config.logging.log_file_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    handler = logging.FileHandler(
        log_path.parent / f"{log_path.stem}_{timestamp}{log_path.suffix}", encoding='utf-8'
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging():
    """
    Configure stdlib logging and structlog once per process.

    Batch lifecycle events are emitted through structlog with key/value
    context (batch_id, profile, counters); they are handed to the standard
    logging handlers so they land in the same console and file output as the
    plain ``logging`` messages of the detection and automation modules.
    """
    global _is_configured
    if _is_configured:
        return

    numeric_level = getattr(logging, config.logging.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    handlers = [console]
    if config.logging.log_file_path:
        handlers.append(_file_handler(formatter))

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="timestamp"),
            structlog.processors.format_exc_info,
            # Event name becomes the record message, the rest record attributes
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _is_configured = True


def get_structured_logger(name: str) -> structlog.BoundLogger:
    """Structured logger for batch events, e.g. ``logger.info("batch_scheduled", batch_id=...)``."""
    return structlog.get_logger(name)


def bind_context(logger: structlog.BoundLogger, **context) -> structlog.BoundLogger:
    """Return ``logger`` with ``context`` attached to every following entry."""
    return logger.bind(**context)
