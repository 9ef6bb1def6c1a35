import logging
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from compass_engine.config import settings

# Third-party loggers that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


class CustomJsonFormatter(JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('timestamp'):
            log_record['timestamp'] = record.created
        if log_record.get('level'):
            log_record['level'] = log_record['level'].upper()
        else:
            log_record['level'] = record.levelname

        log_record['module'] = record.module
        log_record['lineno'] = record.lineno


def setup_logging(log_level_str: Optional[str] = None):
    """
    Configures structured JSON logging on the root logger.

    Args:
        log_level_str: Level name; defaults to ``settings.log_level``.
            Unknown names fall back to INFO.

    Safe to call more than once: later calls only adjust levels. Source
    fetch logging from httpx is kept at WARNING unless running at DEBUG.
    """
    log_level = getattr(logging, (log_level_str or settings.log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING)

    if not any(isinstance(h.formatter, CustomJsonFormatter) for h in root_logger.handlers):
        log_handler = logging.StreamHandler(sys.stdout)
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(module)s %(lineno)d %(message)s')
        log_handler.setFormatter(formatter)
        root_logger.addHandler(log_handler)
        root_logger.info(f"Structured JSON logging configured with level: {logging.getLevelName(log_level)}")
    else:
        root_logger.info(f"Structured JSON logging already configured. Current level: {logging.getLevelName(log_level)}")
