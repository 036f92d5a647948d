"""
Centralized Logging Configuration for XhoraProc

Console plus rotating files:
- <service>_<date>.log      everything at the configured level
- <service>_errors.log      errors only (device failures, persistence failures)
- <service>_proctor.log     [PROCTOR] event lines, kept as an audit trail
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional, Union

# Log directory
LOG_DIR = Path.cwd() / "logs"

# Log format
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PROCTOR_LOGGER = "xhoraproc.proctor.utils.logging"

# Third-party loggers that drown out exam events at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "multipart")


def _rotating_handler(
    path: Path,
    formatter: logging.Formatter,
    level: int,
    max_bytes: int,
    backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8"
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(
    service_name: str = "xhoraproc",
    level: str = "INFO",
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """
    Set up logging for the exam service

    Args:
        service_name: Name of the service (used in log filenames)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_to_file: Whether to write rotating log files
        log_to_console: Whether to write to stdout
        log_dir: Directory for log files (defaults to ./logs)

    Returns:
        Configured service logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Replace handlers from any earlier setup
    root_logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(console_handler)

    log_file = None
    if log_to_file:
        directory = Path(log_dir) if log_dir else LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)

        today = datetime.now().strftime("%Y-%m-%d")
        log_file = directory / f"{service_name}_{today}.log"

        root_logger.addHandler(_rotating_handler(
            log_file, formatter, logging.DEBUG, max_bytes=10 * 1024 * 1024, backup_count=5
        ))
        root_logger.addHandler(_rotating_handler(
            directory / f"{service_name}_errors.log", formatter, logging.ERROR,
            max_bytes=5 * 1024 * 1024, backup_count=3
        ))

        proctor_handler = _rotating_handler(
            directory / f"{service_name}_proctor.log", formatter, logging.INFO,
            max_bytes=10 * 1024 * 1024, backup_count=10
        )
        proctor_handler.addFilter(logging.Filter(PROCTOR_LOGGER))
        root_logger.addHandler(proctor_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(service_name)
    logger.info(f"=== {service_name.upper()} STARTED ===")
    logger.info(f"Log level: {level}")
    if log_file is not None:
        logger.info(f"Log file: {log_file}")

    return logger
