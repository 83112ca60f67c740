"""Root logger setup driven by the ``logging`` config section"""

import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from trend_archive.config import LoggingConfig

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
CONSOLE_FORMAT = '%(levelname)s - %(message)s'


def log_file_path(log_dir: str, day: Optional[datetime] = None) -> Path:
    day = day or datetime.now()
    return Path(log_dir) / f"trend_archive_{day.strftime('%Y%m%d')}.log"


def setup_logging(config: Optional[LoggingConfig] = None) -> Path:
    """
    Attach a rotating file handler and a console handler to the root logger.

    Replaces any handlers already installed, so calling it again after the
    config file has been loaded simply reconfigures logging.

    Returns:
        Path of the active log file
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    log_filename = log_file_path(config.dir)
    log_filename.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_filename,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"logging_configured level={config.level} file={log_filename}")
    return log_filename
