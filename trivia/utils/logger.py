import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from trivia.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILE_NAME = 'trivia_progression.log'
LOG_BACKUP_DAYS = 14

def _file_handler(formatter: logging.Formatter) -> logging.Handler:
    log_dir = Path(Config.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Rolls over at midnight; older days keep a date suffix
    handler = TimedRotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        when='midnight',
        backupCount=LOG_BACKUP_DAYS,
        encoding='utf-8',
        delay=True
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler

def setup_logger(name: str) -> logging.Logger:
    """Logger with a stdout handler and a daily log file under Config.LOG_DIR"""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    logger.addHandler(_file_handler(formatter))
    return logger
