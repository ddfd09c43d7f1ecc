import logging
import sys
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Optional
from pythonjsonlogger import jsonlogger

# third-party loggers that are only interesting when something goes wrong
NOISY_LOGGERS = ('discord', 'discord.http', 'discord.gateway', 'httpx', 'httpcore')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None):
    """
    Console gets readable text at LOG_LEVEL; the rotating file gets every
    record as JSON. Timestamps are UTC so they line up with stored competition times.
    Calling it again once handlers exist does nothing.
    """
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    root_logger.setLevel(logging.DEBUG)

    console_formatter = logging.Formatter(
        '%(asctime)sZ [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter.converter = time.gmtime

    json_formatter = jsonlogger.JsonFormatter(
        '%(asctime)s %(levelname)s %(name)s %(message)s',
        rename_fields={'asctime': 'timestamp', 'levelname': 'level', 'name': 'logger'},
        static_fields={'service': 'clerk'},
        json_ensure_ascii=False
    )
    json_formatter.converter = time.gmtime

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(console_level)
    root_logger.addHandler(console_handler)

    log_dir = log_dir or os.getenv('LOG_DIR', 'logs')
    os.makedirs(log_dir, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, 'clerk.log'),
        when='midnight',
        interval=_int_env('LOG_ROTATION_INTERVAL_DAYS', 1),
        backupCount=_int_env('LOG_BACKUP_COUNT', 7),
        encoding='utf-8',
        utc=True,
    )
    file_handler.setFormatter(json_formatter)
    file_handler.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialised",
        extra={'console_level': logging.getLevelName(console_level), 'log_dir': log_dir}
    )
